"""Tests for the runtime registry."""

import pytest

from codexcli.errors import UnsupportedLanguage
from codexcli.registry import LANGUAGES, LanguageSpec, render, resolve, supported_languages


class TestResolve:
    """Tag lookup."""

    @pytest.mark.parametrize("tag", ["python", "javascript", "typescript", "rust", "bash", "html"])
    def test_supported_tags_have_run_command(self, tag):
        """Every supported tag resolves to a spec with a non-empty run command."""
        spec = resolve(tag)
        assert isinstance(spec, LanguageSpec)
        assert spec.tag == tag
        assert len(spec.run_command) > 0

    @pytest.mark.parametrize("alias,tag", [
        ("py", "python"),
        ("PY", "python"),
        ("js", "javascript"),
        ("node", "javascript"),
        ("ts", "typescript"),
        ("rs", "rust"),
        ("sh", "bash"),
        (" shell ", "bash"),
        ("htm", "html"),
    ])
    def test_aliases_and_case(self, alias, tag):
        """Aliases are case-insensitive and whitespace-tolerant."""
        assert resolve(alias).tag == tag

    @pytest.mark.parametrize("tag", ["cobol", "", None, "python2"])
    def test_unsupported_tags_raise(self, tag):
        """Unknown or empty tags raise UnsupportedLanguage."""
        with pytest.raises(UnsupportedLanguage):
            resolve(tag)

    def test_supported_languages_in_registry_order(self):
        assert supported_languages() == [spec.tag for spec in LANGUAGES]


class TestLanguageSpecs:
    """Field consistency across the table."""

    def test_specs_are_frozen(self):
        spec = resolve("python")
        with pytest.raises(Exception):
            spec.tag = "other"

    def test_installers_have_isolation(self):
        """A language that installs packages also has an isolation directory and a create command."""
        for spec in LANGUAGES:
            if spec.installs_packages:
                assert spec.isolation_dir
                assert spec.create_command
                assert any("{package}" in part for part in spec.install_command)

    def test_extensions_start_with_dot(self):
        for spec in LANGUAGES:
            assert spec.extension.startswith(".")

    def test_rust_compiles_then_runs_binary(self):
        spec = resolve("rust")
        assert spec.compile_command is not None
        assert spec.run_command == ("{binary}",)
        assert not spec.installs_packages

    def test_typescript_bootstraps_ts_node(self):
        assert {"typescript", "ts-node"} <= set(resolve("typescript").bootstrap_packages)


class TestRender:
    def test_binds_placeholders(self):
        assert render(("node", "{source}"), {"source": "/tmp/a.js"}) == ["node", "/tmp/a.js"]

    def test_missing_placeholder_raises(self):
        with pytest.raises(KeyError):
            render(("{binary}",), {"source": "x"})
