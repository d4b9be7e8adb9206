"""Default configurations for hybrid code search."""

from pathlib import Path

# Default file extensions to index
DEFAULT_FILE_EXTENSIONS = [
    ".py",  # Python (syntax chunking via ast)
    ".pyw",
    ".js",  # JavaScript (tree-sitter)
    ".jsx",
    ".mjs",
    ".cjs",
    ".ts",  # TypeScript (tree-sitter)
    ".tsx",
    ".java",
    ".go",
    ".rs",
    ".c",
    ".h",
    ".cpp",
    ".cc",
    ".hpp",
    ".cs",
    ".rb",
    ".php",
    ".swift",  # line windows
    ".kt",
    ".scala",
    ".sh",
    ".bash",
    ".json",
    ".yaml",
    ".yml",
    ".toml",
    ".md",
    ".txt",
]

# Language identifiers by extension
LANGUAGE_MAPPINGS: dict[str, str] = {
    ".py": "python",
    ".pyw": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "tsx",
    ".java": "java",
    ".go": "go",
    ".rs": "rust",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".hpp": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".sh": "shellscript",
    ".bash": "shellscript",
    ".json": "json",
    ".yaml": "yaml",
    ".yml": "yaml",
    ".toml": "toml",
    ".md": "markdown",
    ".txt": "plaintext",
}

# Languages chunked by top-level declarations through tree-sitter.
# Maps our language id to the grammar name in tree-sitter-language-pack.
TREE_SITTER_GRAMMARS: dict[str, str] = {
    "javascript": "javascript",
    "typescript": "typescript",
    "tsx": "tsx",
    "java": "java",
    "go": "go",
    "rust": "rust",
    "c": "c",
    "cpp": "cpp",
    "csharp": "csharp",
    "ruby": "ruby",
    "php": "php",
}

# Node types that count as a top-level declaration
DECLARATION_NODE_TYPES = frozenset(
    {
        # JavaScript / TypeScript
        "function_declaration",
        "generator_function_declaration",
        "class_declaration",
        "abstract_class_declaration",
        "interface_declaration",
        "type_alias_declaration",
        "enum_declaration",
        "lexical_declaration",
        "export_statement",
        # Java / C#
        "method_declaration",
        "record_declaration",
        "struct_declaration",
        "namespace_declaration",
        # Go
        "type_declaration",
        # Rust
        "function_item",
        "impl_item",
        "struct_item",
        "enum_item",
        "trait_item",
        "mod_item",
        # C / C++
        "function_definition",
        "struct_specifier",
        "class_specifier",
        "namespace_definition",
        # Ruby
        "method",
        "class",
        "module",
        # PHP
        "trait_declaration",
    }
)

# Directories and files to ignore during indexing
DEFAULT_IGNORE_PATTERNS = [
    # Version control
    ".git",
    ".hg",
    ".svn",
    # Python caches and environments
    "__pycache__",
    ".mypy_cache",
    ".pytest_cache",
    ".ruff_cache",
    ".tox",
    ".venv",
    "venv",
    # JavaScript/Node.js
    "node_modules",
    "bower_components",
    "coverage",
    # Build outputs
    "build",
    "dist",
    "out",
    "target",
    # IDEs and editors
    ".idea",
    ".vscode",
    # Packaging
    "*.egg-info",
    "vendor",
    # OS files
    ".DS_Store",
    # Our own index directory
    ".hybrid-code-search",
]

# Files larger than this are skipped (bytes)
MAX_FILE_SIZE = 1_000_000

# Chunking
DEFAULT_CHUNK_SIZE_LINES = 200
SNIPPET_LENGTH = 500

# BM25 parameters
BM25_K1 = 1.5
BM25_B = 0.75

# Remote embedding provider defaults
DEFAULT_EMBEDDING_API_URL = "https://api.voyageai.com/v1/embeddings"
DEFAULT_EMBEDDING_MODEL = "voyage-code-3"
DEFAULT_EMBEDDING_DIMENSION = 1024
DEFAULT_REQUESTS_PER_MINUTE = 300
MAX_BATCH_ITEMS = 128
MAX_BATCH_TOKENS = 120_000
TRUNCATION_SAFETY_TOKENS = 1_000
CHARS_PER_TOKEN = 4
MAX_ATTEMPTS = 5
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_CAP_SECONDS = 30.0

# Local embedding runtimes
HASH_EMBEDDING_DIMENSION = 256
DEFAULT_LOCAL_MODEL = "sentence-transformers/all-MiniLM-L6-v2"

# Hybrid scoring weights
SEMANTIC_WEIGHT = 0.65
LEXICAL_WEIGHT = 0.25
RECENCY_WEIGHT = 0.10
LEXICAL_ONLY_WEIGHT = 0.75
LEXICAL_ONLY_RECENCY_WEIGHT = 0.25

# Cloud metadata limits
CLOUD_CONTENT_PREVIEW_CHARS = 1000


def get_default_index_path() -> Path:
    """Get default directory holding per-workspace index databases."""
    return Path.home() / ".hybrid-code-search" / "indexes"


def get_language_from_extension(extension: str) -> str | None:
    """Get language id from file extension."""
    return LANGUAGE_MAPPINGS.get(extension.lower())
