"""Tests for manifest loading and validation."""

import logging
import tomllib
from pathlib import Path

import pytest

from mbuild.config.manifest import (
    BinaryTarget,
    LibraryKind,
    LibraryTarget,
    Manifest,
    find_manifest,
    load_manifest,
)
from mbuild.errors import ManifestError, TargetNotFoundError

APP_MANIFEST = """
[project]
name = "app"
version = "1.2.0"
file-extensions = ["cpp"]
compiler = "g++"
compiler-flags = ["Wall", "-O2"]
include = ["include"]
libraries = ["m"]
ignore = ["tests/"]
before-script = ["echo before"]
after-script = ["echo after"]

[[bin]]
name = "app"
path = "src/main.cpp"

[[lib]]
name = "util"
types = ["static", "shared"]
"""


def _manifest(text: str, root: Path, strict: bool = False) -> Manifest:
    return Manifest.from_document(tomllib.loads(text), root=root, strict=strict)


class TestManifestParsing:
    """Test conversion of the TOML document into the typed model."""

    def test_full_manifest(self, tmp_path):
        """All [project] keys and both target kinds are parsed."""
        manifest = _manifest(APP_MANIFEST, tmp_path)

        project = manifest.project
        assert project.name == "app"
        assert project.version == "1.2.0"
        assert project.file_extensions == (".cpp",)
        assert project.compiler == "g++"
        assert project.compiler_flags == ("Wall", "-O2")
        assert project.include == ("include",)
        assert project.libraries == ("m",)
        assert project.ignore == ("tests/",)
        assert project.before_script == ("echo before",)
        assert project.after_script == ("echo after",)

        assert manifest.binaries == (BinaryTarget(name="app", path="src/main.cpp"),)
        assert manifest.libraries == (LibraryTarget(name="util", kinds=(LibraryKind.STATIC, LibraryKind.SHARED)),)
        assert manifest.wants_shared is True

    def test_defaults(self, tmp_path):
        """Unset keys fall back to the default toolchain and build directory."""
        manifest = _manifest('[project]\nfile-extensions = [".c"]\n', tmp_path)

        project = manifest.project
        assert project.name == tmp_path.name
        assert project.compiler == "gcc"
        assert project.ar == "ar"
        assert project.arflags == ("rcs",)
        assert project.build_dir == ".mbuild"
        assert project.src is None
        assert manifest.build_dir == tmp_path / ".mbuild"
        assert manifest.targets == ()

    def test_arflags_string_is_split(self, tmp_path):
        manifest = _manifest('[project]\nfile-extensions = ["c"]\narflags = "rc s"\n', tmp_path)
        assert manifest.project.arflags == ("rc", "s")

    def test_library_types_default_to_static(self, tmp_path):
        manifest = _manifest('[project]\nfile-extensions = ["c"]\n[[lib]]\nname = "x"\n', tmp_path)
        assert manifest.libraries[0].kinds == (LibraryKind.STATIC,)
        assert manifest.wants_shared is False

    def test_explicit_src_allows_empty_extensions(self, tmp_path):
        """file-extensions may be omitted when src lists the sources."""
        manifest = _manifest('[project]\nsrc = ["a.c", "b.c"]\n', tmp_path)
        assert manifest.project.src == ("a.c", "b.c")
        assert manifest.project.file_extensions == ()


class TestManifestValidation:
    """Test that malformed manifests are rejected with ManifestError."""

    @pytest.mark.parametrize(
        "text, message",
        [
            ('[[bin]]\nname = "x"\npath = "x.c"\n', "Missing [project]"),
            ("[project]\nname = \"x\"\n", "file-extensions must be non-empty"),
            ('[project]\nfile-extensions = ["c"]\n[[bin]]\nname = "x"\n', "missing required key 'path'"),
            ('[project]\nfile-extensions = ["c"]\n[[bin]]\npath = "x.c"\n', "missing required key 'name'"),
            ('[project]\nfile-extensions = ["c"]\n[[lib]]\ntypes = ["static"]\n', "missing required key 'name'"),
            ('[project]\nfile-extensions = ["c"]\n[[lib]]\nname = "x"\ntypes = ["dynamic"]\n', "unknown library type 'dynamic'"),
            ('[project]\nfile-extensions = ["c"]\n[[lib]]\nname = "x"\ntypes = []\n', "types must not be empty"),
            ('[project]\nfile-extensions = ["c", 1]\n', "must be an array of strings"),
            ('[project]\nfile-extensions = "c"\n', "must be an array of strings"),
        ],
    )
    def test_invalid(self, tmp_path, text, message):
        with pytest.raises(ManifestError, match=message.replace("[", r"\[")):
            _manifest(text, tmp_path)

    def test_duplicate_binary_names(self, tmp_path):
        text = '[project]\nfile-extensions = ["c"]\n[[bin]]\nname = "a"\npath = "a.c"\n[[bin]]\nname = "a"\npath = "b.c"\n'
        with pytest.raises(ManifestError, match="Duplicate"):
            _manifest(text, tmp_path)

    def test_unknown_key_warns(self, tmp_path, caplog):
        """Unknown keys are logged, not fatal, outside strict mode."""
        with caplog.at_level(logging.WARNING):
            manifest = _manifest('[project]\nfile-extensions = ["c"]\nfancy = true\n', tmp_path)
        assert manifest.project.file_extensions == (".c",)
        assert "fancy" in caplog.text

    def test_unknown_key_strict(self, tmp_path):
        with pytest.raises(ManifestError, match="fancy"):
            _manifest('[project]\nfile-extensions = ["c"]\nfancy = true\n', tmp_path, strict=True)


class TestSelectTargets:
    """Test target selection by name."""

    def test_all_targets_by_default(self, tmp_path):
        manifest = _manifest(APP_MANIFEST, tmp_path)
        assert [t.name for t in manifest.select_targets()] == ["app", "util"]

    def test_declaration_order_kept(self, tmp_path):
        manifest = _manifest(APP_MANIFEST, tmp_path)
        assert [t.name for t in manifest.select_targets(["util", "app"])] == ["app", "util"]

    def test_unknown_target(self, tmp_path):
        manifest = _manifest(APP_MANIFEST, tmp_path)
        with pytest.raises(TargetNotFoundError) as exc_info:
            manifest.select_targets(["nope"])
        assert exc_info.value.name == "nope"
        assert "app, util" in str(exc_info.value)


class TestLoadAndFind:
    """Test reading manifests from disk."""

    def test_load_manifest(self, tmp_path):
        path = tmp_path / "mbuild.toml"
        path.write_text(APP_MANIFEST)

        manifest = load_manifest(path)

        assert manifest.root == tmp_path.resolve()
        assert manifest.path == path

    def test_load_invalid_toml(self, tmp_path):
        path = tmp_path / "mbuild.toml"
        path.write_text("[project\n")
        with pytest.raises(ManifestError, match="Invalid TOML"):
            load_manifest(path)

    def test_load_missing_file(self, tmp_path):
        with pytest.raises(ManifestError, match="Cannot read"):
            load_manifest(tmp_path / "mbuild.toml")

    def test_find_manifest_walks_up(self, tmp_path):
        (tmp_path / "mbuild.toml").write_text(APP_MANIFEST)
        nested = tmp_path / "src" / "deep"
        nested.mkdir(parents=True)

        assert find_manifest(nested) == (tmp_path / "mbuild.toml").resolve()

    def test_find_manifest_named_after_directory(self, tmp_path):
        project = tmp_path / "demo"
        project.mkdir()
        (project / "demo.toml").write_text(APP_MANIFEST)

        assert find_manifest(project) == (project / "demo.toml").resolve()

    def test_find_manifest_prefers_mbuild_toml(self, tmp_path):
        project = tmp_path / "demo"
        project.mkdir()
        (project / "demo.toml").write_text(APP_MANIFEST)
        (project / "mbuild.toml").write_text(APP_MANIFEST)

        assert find_manifest(project).name == "mbuild.toml"
