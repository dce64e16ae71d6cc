"""Tests for dependency extraction (pure, no subprocesses)."""

from codexcli.deps import extract, missing_packages, node_package, pending, python_package


class TestPythonExtraction:
    """import / from-import handling."""

    def test_third_party_imports(self):
        source = "import requests\nfrom flask import Flask\nimport numpy as np\n"
        assert extract("python", source) == {"requests", "flask", "numpy"}

    def test_stdlib_excluded(self):
        """Standard-library modules are never reported."""
        source = "import os, sys\nimport json\nfrom collections import Counter\nfrom __future__ import annotations\n"
        assert extract("python", source) == set()

    def test_submodule_reduced_to_top_level(self):
        assert extract("python", "import matplotlib.pyplot as plt\n") == {"matplotlib"}

    def test_import_name_mapped_to_distribution(self):
        source = "import yaml\nfrom PIL import Image\nimport cv2\nfrom sklearn.linear_model import LinearRegression\n"
        assert extract("python", source) == {"pyyaml", "Pillow", "opencv-python", "scikit-learn"}

    def test_relative_imports_ignored(self):
        assert extract("python", "from . import sibling\nfrom .pkg import thing\n") == set()

    def test_imports_inside_functions(self):
        source = "def f():\n    import pandas\n    return pandas\n"
        assert extract("python", source) == {"pandas"}

    def test_syntax_error_falls_back_to_regex(self):
        """Broken code still yields its imports."""
        source = "import requests\nfrom rich import print\n\ndef broken(:\n"
        assert extract("python", source) == {"requests", "rich"}

    def test_local_module_skipped(self, tmp_path):
        (tmp_path / "helpers.py").write_text("X = 1\n")
        (tmp_path / "mypkg").mkdir()
        (tmp_path / "mypkg" / "__init__.py").write_text("")
        source = "import helpers\nfrom mypkg import thing\nimport requests\n"
        assert extract("python", source, tmp_path) == {"requests"}

    def test_python_package_stdlib_is_none(self):
        assert python_package("os.path") is None

    def test_namespace_subpackages_mapped(self):
        source = "from google.cloud import storage\nimport google.cloud.bigquery\nfrom azure.identity import DefaultAzureCredential\n"
        assert extract("python", source) == {"google-cloud-bigquery", "azure-identity"}
        assert python_package("google.cloud.storage") == "google-cloud-storage"

    def test_unmapped_namespace_root_is_none(self):
        """A bare namespace root is never installable."""
        assert python_package("google.cloud.unknownthing") is None
        assert python_package("azure") is None
        assert python_package("google.protobuf.message") == "protobuf"


class TestEcmascriptExtraction:
    """require / import for JavaScript and TypeScript."""

    def test_require_and_import(self):
        source = (
            "const express = require('express');\n"
            "import axios from \"axios\";\n"
            "import { z } from 'zod';\n"
            "import 'dotenv/config';\n"
            "const lazy = await import('chalk');\n"
        )
        assert extract("javascript", source) == {"express", "axios", "zod", "dotenv", "chalk"}

    def test_builtins_and_relative_excluded(self):
        source = (
            "const fs = require('fs');\n"
            "const path = require('node:path');\n"
            "import { helper } from './helper';\n"
            "import cp from 'child_process';\n"
        )
        assert extract("javascript", source) == set()

    def test_scoped_packages(self):
        assert extract("typescript", "import { Client } from '@scope/pkg/sub';\n") == {"@scope/pkg"}
        assert node_package("@scope") is None

    def test_type_imports(self):
        assert extract("ts", "import type { Foo } from 'foo-types';\n") == {"foo-types"}


class TestRustExtraction:
    def test_use_and_extern_crate(self):
        source = "use std::io;\nuse rand::Rng;\nextern crate serde;\nuse crate::util;\n"
        assert extract("rust", source) == {"rand", "serde"}

    def test_local_modules_excluded(self):
        source = "mod util;\npub(crate) mod shapes;\nuse util::helper;\nuse shapes::Square;\nuse rand::Rng;\n"
        assert extract("rust", source) == {"rand"}


class TestNeverRaises:
    """Extraction degrades to an empty set."""

    def test_unsupported_language(self):
        assert extract("cobol", "IDENTIFICATION DIVISION.") == set()

    def test_language_without_syntax(self):
        assert extract("bash", "source ./env.sh\nimport foo\n") == set()

    def test_garbage_input(self):
        assert extract("python", "\x00\x01 import") == set()
        assert extract("javascript", "require(") == set()

    def test_deeply_nested_source(self):
        source = "x = " + "(" * 5000 + ")" * 5000 + "\nimport requests\n"
        assert extract("python", source) <= {"requests"}


class TestMissingPackages:
    """Packages named by "module not found" errors."""

    def test_python_module_not_found(self):
        stderr = "Traceback (most recent call last):\n  ...\nModuleNotFoundError: No module named 'requests'\n"
        assert missing_packages("python", stderr) == {"requests"}

    def test_python_submodule_mapped(self):
        stderr = "ModuleNotFoundError: No module named 'yaml.loader'"
        assert missing_packages("python", stderr) == {"pyyaml"}

    def test_stdlib_not_reported(self):
        stderr = "ModuleNotFoundError: No module named 'tkinter'"
        assert missing_packages("python", stderr) == set()

    def test_node_cannot_find_module(self):
        stderr = "Error: Cannot find module 'lodash'\nRequire stack:\n- /tmp/snippet.js"
        assert missing_packages("javascript", stderr) == {"lodash"}

    def test_node_relative_module_ignored(self):
        assert missing_packages("javascript", "Error: Cannot find module './local'") == set()

    def test_no_match(self):
        assert missing_packages("python", "ZeroDivisionError: division by zero") == set()
        assert missing_packages("bash", "command not found") == set()


class TestPending:
    def test_pending_excludes_installed(self):
        assert pending({"a", "b"}, ["b", "c"]) == {"c"}
