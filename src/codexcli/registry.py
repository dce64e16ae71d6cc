"""Runtime registry - one LanguageSpec per supported language.

Adding a language means adding one entry to LANGUAGES. Everything else in the
engine (environment setup, dependency extraction, execution, failure
classification) is driven by the fields of the resolved LanguageSpec.

Templates are tuples of strings with ``{placeholders}``:

    env         isolation root for (workdir, language)
    isolation   virtual environment / node_modules path inside the root
    interpreter the Python interpreter running codexcli
    source      staged source file
    binary      compiled output (Rust)
    workdir     the user's working directory
    package     package name (install command only)

plus any names a spec declares in ``bindings``.
"""

import os
import sys
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from codexcli.errors import UnsupportedLanguage


Template = Tuple[str, ...]

_VENV_BIN = "Scripts" if os.name == "nt" else "bin"
_EXE = ".exe" if os.name == "nt" else ""


def _browser_command() -> Template:
    """Command that opens a file in the default browser on this platform."""
    if os.name == "nt":
        return ("cmd", "/C", "start", "", "{source}")
    if sys.platform == "darwin":
        return ("open", "{source}")
    return ("xdg-open", "{source}")


@dataclass(frozen=True)
class LanguageSpec:
    """Toolchain descriptor for one language."""
    tag: str
    extension: str
    run_command: Template
    aliases: Tuple[str, ...] = ()
    compile_command: Optional[Template] = None
    isolation_dir: Optional[str] = None
    create_command: Optional[Template] = None
    created_marker: Optional[str] = None  # relative to the root; skips creation when present
    install_command: Optional[Template] = None
    manifest: Optional[str] = None
    bootstrap_packages: Tuple[str, ...] = ()
    env_vars: Mapping[str, str] = field(default_factory=dict)
    bindings: Mapping[str, str] = field(default_factory=dict)
    dependency_syntax: Optional[str] = None  # key into deps.EXTRACTORS
    missing_module_patterns: Tuple[str, ...] = ()
    keep_staged: bool = False

    @property
    def installs_packages(self) -> bool:
        return self.install_command is not None


def render(template: Template, values: Mapping[str, str]) -> List[str]:
    """Bind a command template to concrete values."""
    return [part.format(**values) for part in template]


LANGUAGES: Tuple[LanguageSpec, ...] = (
    LanguageSpec(
        tag="python",
        aliases=("py", "python3"),
        extension=".py",
        run_command=("{python}", "-u", "{source}"),
        isolation_dir="venv",
        create_command=("{interpreter}", "-m", "venv", "{isolation}"),
        created_marker="venv/pyvenv.cfg",
        install_command=(
            "{python}", "-m", "pip", "install", "--disable-pip-version-check", "{package}",
        ),
        manifest="requirements.txt",
        env_vars=MappingProxyType({
            "VIRTUAL_ENV": "{isolation}",
            "PYTHONUNBUFFERED": "1",
            "PYTHONPATH": "{workdir}",
        }),
        bindings=MappingProxyType({"python": "{isolation}/" + _VENV_BIN + "/python" + _EXE}),
        dependency_syntax="python",
        missing_module_patterns=(
            r"ModuleNotFoundError: No module named '([\w.]+)'",
            r"ImportError: No module named '?([\w.]+)'?",
        ),
    ),
    LanguageSpec(
        tag="javascript",
        aliases=("js", "node", "nodejs"),
        extension=".js",
        run_command=("node", "{source}"),
        isolation_dir="node_modules",
        create_command=("npm", "init", "-y"),
        created_marker="package.json",
        install_command=("npm", "install", "--no-audit", "--no-fund", "{package}"),
        manifest="package.json",
        env_vars=MappingProxyType({"NODE_PATH": "{isolation}"}),
        dependency_syntax="ecmascript",
        missing_module_patterns=(
            r"Cannot find module '([^']+)'",
            r"Cannot find package '([^']+)'",
        ),
    ),
    LanguageSpec(
        tag="typescript",
        aliases=("ts",),
        extension=".ts",
        run_command=("{isolation}/.bin/ts-node", "{source}"),
        isolation_dir="node_modules",
        create_command=("npm", "init", "-y"),
        created_marker="package.json",
        install_command=("npm", "install", "--no-audit", "--no-fund", "{package}"),
        manifest="package.json",
        bootstrap_packages=("typescript", "ts-node", "@types/node"),
        env_vars=MappingProxyType({"NODE_PATH": "{isolation}"}),
        dependency_syntax="ecmascript",
        missing_module_patterns=(
            r"Cannot find module '([^']+)'",
            r"Cannot find package '([^']+)'",
        ),
    ),
    LanguageSpec(
        tag="rust",
        aliases=("rs",),
        extension=".rs",
        compile_command=("rustc", "{source}", "-o", "{binary}"),
        run_command=("{binary}",),
        dependency_syntax="rust",
    ),
    LanguageSpec(
        tag="bash",
        aliases=("sh", "shell"),
        extension=".sh",
        run_command=("bash", "{source}"),
    ),
    LanguageSpec(
        tag="html",
        aliases=("htm",),
        extension=".html",
        run_command=_browser_command(),
        keep_staged=True,
    ),
)


def _build_index(languages: Tuple[LanguageSpec, ...]) -> Dict[str, LanguageSpec]:
    index: Dict[str, LanguageSpec] = {}
    for spec in languages:
        for name in (spec.tag,) + spec.aliases:
            if name in index:
                raise ValueError(f"Duplicate language tag: {name}")
            index[name] = spec
    return index


_INDEX = MappingProxyType(_build_index(LANGUAGES))


def resolve(tag: Optional[str]) -> LanguageSpec:
    """
    Look up the LanguageSpec for a fence tag or language name.

    Raises:
        UnsupportedLanguage: If the tag is empty or unknown
    """
    key = (tag or "").strip().lower()
    try:
        return _INDEX[key]
    except KeyError:
        raise UnsupportedLanguage(tag) from None


def supported_languages() -> List[str]:
    """Canonical tags in registry order."""
    return [spec.tag for spec in LANGUAGES]
