"""Dependency extraction - which packages does a code block need?

Heuristic, per-language pattern matching over import/require syntax. Never
raises: unrecognised syntax extracts nothing. Under-extraction is fine (the
run fails with a real "module not found" error, which the healing loop
handles); over-extraction of standard-library modules is not, so every
language has a deny-list.
"""

import ast
import re
import sys
from pathlib import Path
from typing import Callable, Dict, FrozenSet, Iterable, Optional, Set, Union

from codexcli.errors import UnsupportedLanguage
from codexcli.registry import LanguageSpec, resolve


# =============================================================================
# DENY-LISTS AND NAME MAPS
# =============================================================================

PYTHON_STDLIB: FrozenSet[str] = frozenset(sys.stdlib_module_names) | {"__future__", "__main__"}

# Import name -> distribution name where they differ
PIP_NAME_MAP = {
    "PIL": "Pillow",
    "cv2": "opencv-python",
    "bs4": "beautifulsoup4",
    "yaml": "pyyaml",
    "sklearn": "scikit-learn",
    "skimage": "scikit-image",
    "dateutil": "python-dateutil",
    "dotenv": "python-dotenv",
    "gi": "PyGObject",
    "attr": "attrs",
    "serial": "pyserial",
    "usb": "pyusb",
    "Bio": "biopython",
    "Crypto": "pycryptodome",
    "jwt": "PyJWT",
    "docx": "python-docx",
    "pptx": "python-pptx",
    "magic": "python-magic",
    "OpenSSL": "pyOpenSSL",
    "google.protobuf": "protobuf",
    "google.cloud.storage": "google-cloud-storage",
    "google.cloud.bigquery": "google-cloud-bigquery",
    "google.cloud.pubsub": "google-cloud-pubsub",
    "google.cloud.pubsub_v1": "google-cloud-pubsub",
    "google.cloud.firestore": "google-cloud-firestore",
    "google.generativeai": "google-generativeai",
    "google.genai": "google-genai",
    "azure.identity": "azure-identity",
    "azure.storage.blob": "azure-storage-blob",
    "azure.storage.queue": "azure-storage-queue",
    "azure.keyvault.secrets": "azure-keyvault-secrets",
}

# Namespace roots shared by many distributions; never installable by themselves
PYTHON_NAMESPACE_ROOTS: FrozenSet[str] = frozenset({"google", "azure"})

NODE_BUILTINS: FrozenSet[str] = frozenset({
    "assert", "async_hooks", "buffer", "child_process", "cluster", "console",
    "constants", "crypto", "dgram", "diagnostics_channel", "dns", "domain",
    "events", "fs", "http", "http2", "https", "inspector", "module", "net",
    "os", "path", "perf_hooks", "process", "punycode", "querystring",
    "readline", "repl", "stream", "string_decoder", "sys", "timers", "tls",
    "trace_events", "tty", "url", "util", "v8", "vm", "wasi", "worker_threads",
    "zlib", "test",
})

RUST_BUILTIN_CRATES: FrozenSet[str] = frozenset({
    "std", "core", "alloc", "crate", "self", "super", "proc_macro", "test",
})


# =============================================================================
# PYTHON
# =============================================================================

_PY_IMPORT_RE = re.compile(r"^\s*import\s+([\w.]+(?:\s*,\s*[\w.]+)*)", re.MULTILINE)
_PY_FROM_RE = re.compile(r"^\s*from\s+([\w.]+)\s+import\b", re.MULTILINE)


def _python_module_names(source: str) -> Set[str]:
    """Dotted names of absolute imports, via ast with a regex fallback."""
    names: Set[str] = set()
    try:
        tree = ast.parse(source)
    except (SyntaxError, ValueError):
        for match in _PY_IMPORT_RE.finditer(source):
            names.update(part.strip() for part in match.group(1).split(","))
        names.update(match.group(1) for match in _PY_FROM_RE.finditer(source))
        return names

    for node in ast.walk(tree):
        if isinstance(node, ast.Import):
            names.update(alias.name for alias in node.names)
        elif isinstance(node, ast.ImportFrom) and node.level == 0 and node.module:
            names.add(node.module)
    return names


def python_package(module: str, workdir: Optional[Path] = None) -> Optional[str]:
    """Map an imported module name to the package to install, or None."""
    top = module.split(".")[0]
    if not top or top in PYTHON_STDLIB:
        return None
    if workdir is not None and (
        (workdir / f"{top}.py").exists() or (workdir / top / "__init__.py").exists()
    ):
        return None
    parts = module.split(".")
    for depth in range(len(parts), 0, -1):
        prefix = ".".join(parts[:depth])
        if prefix in PIP_NAME_MAP:
            return PIP_NAME_MAP[prefix]
    if top in PYTHON_NAMESPACE_ROOTS:
        return None
    return top


def extract_python(source: str, workdir: Optional[Path] = None) -> Set[str]:
    packages = set()
    for module in _python_module_names(source):
        package = python_package(module, workdir)
        if package:
            packages.add(package)
    return packages


# =============================================================================
# ECMASCRIPT (JavaScript / TypeScript)
# =============================================================================

_ES_PATTERNS = (
    re.compile(r"""\brequire\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""\bimport\s*\(\s*['"]([^'"]+)['"]\s*\)"""),
    re.compile(r"""^\s*import\s+(?:type\s+)?[\w*{}\s,$]+\s+from\s+['"]([^'"]+)['"]""", re.MULTILINE),
    re.compile(r"""^\s*import\s+['"]([^'"]+)['"]""", re.MULTILINE),
    re.compile(r"""^\s*export\s+[\w*{}\s,$]+\s+from\s+['"]([^'"]+)['"]""", re.MULTILINE),
)


def node_package(specifier: str, workdir: Optional[Path] = None) -> Optional[str]:
    """Reduce a module specifier to its npm package name, or None."""
    specifier = specifier.strip()
    if not specifier or specifier.startswith((".", "/", "node:", "file:", "http:", "https:")):
        return None
    parts = specifier.split("/")
    if specifier.startswith("@"):
        if len(parts) < 2 or not parts[1]:
            return None
        return "/".join(parts[:2])
    name = parts[0]
    if name in NODE_BUILTINS:
        return None
    return name


def extract_ecmascript(source: str, workdir: Optional[Path] = None) -> Set[str]:
    packages = set()
    for pattern in _ES_PATTERNS:
        for match in pattern.finditer(source):
            package = node_package(match.group(1), workdir)
            if package:
                packages.add(package)
    return packages


# =============================================================================
# RUST
# =============================================================================

_RUST_USE_RE = re.compile(r"^\s*(?:pub\s+)?use\s+:{0,2}(\w+)\s*::", re.MULTILINE)
_RUST_EXTERN_RE = re.compile(r"^\s*extern\s+crate\s+(\w+)", re.MULTILINE)
_RUST_MOD_RE = re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?mod\s+(\w+)", re.MULTILINE)


def rust_crate(name: str, workdir: Optional[Path] = None) -> Optional[str]:
    if name in RUST_BUILTIN_CRATES:
        return None
    return name


def extract_rust(source: str, workdir: Optional[Path] = None) -> Set[str]:
    local_modules = {match.group(1) for match in _RUST_MOD_RE.finditer(source)}
    crates = set()
    for pattern in (_RUST_USE_RE, _RUST_EXTERN_RE):
        for match in pattern.finditer(source):
            crate = rust_crate(match.group(1), workdir)
            if crate and crate not in local_modules:
                crates.add(crate)
    return crates


# =============================================================================
# PUBLIC API
# =============================================================================

Extractor = Callable[[str, Optional[Path]], Set[str]]
Normalizer = Callable[[str, Optional[Path]], Optional[str]]

EXTRACTORS: Dict[str, Extractor] = {
    "python": extract_python,
    "ecmascript": extract_ecmascript,
    "rust": extract_rust,
}

NORMALIZERS: Dict[str, Normalizer] = {
    "python": python_package,
    "ecmascript": node_package,
    "rust": rust_crate,
}


def _spec_for(language: Union[str, LanguageSpec]) -> Optional[LanguageSpec]:
    if isinstance(language, LanguageSpec):
        return language
    try:
        return resolve(language)
    except UnsupportedLanguage:
        return None


def extract(
    language: Union[str, LanguageSpec],
    source: str,
    workdir: Optional[Union[str, Path]] = None,
) -> Set[str]:
    """
    Packages a code block imports, excluding builtins and local modules.

    Args:
        language: Language tag or resolved LanguageSpec
        source: Code block text
        workdir: Optional project directory, used to skip local modules

    Returns:
        Set of package names (possibly empty). Never raises.
    """
    spec = _spec_for(language)
    if spec is None or spec.dependency_syntax not in EXTRACTORS:
        return set()
    root = Path(workdir) if workdir is not None else None
    try:
        return EXTRACTORS[spec.dependency_syntax](source, root)
    except RecursionError:
        # ast.parse on pathologically nested input
        return set()


def missing_packages(
    language: Union[str, LanguageSpec],
    error_output: str,
    workdir: Optional[Union[str, Path]] = None,
) -> Set[str]:
    """Packages named by "module not found" diagnostics in error output."""
    spec = _spec_for(language)
    if spec is None or not error_output:
        return set()
    normalize = NORMALIZERS.get(spec.dependency_syntax or "")
    if normalize is None:
        return set()
    root = Path(workdir) if workdir is not None else None

    packages = set()
    for pattern in spec.missing_module_patterns:
        for match in re.finditer(pattern, error_output):
            package = normalize(match.group(1), root)
            if package:
                packages.add(package)
    return packages


def pending(installed: Iterable[str], packages: Iterable[str]) -> Set[str]:
    """Packages not yet recorded as installed."""
    return set(packages) - set(installed)
