# --- Log and Debug ---
# Short aliases for module names to keep CLI/env concise
LOG_ALIAS_MAP = {
    "pipe": "layerbuild.builder.pipeline",
    "pipeline": "layerbuild.builder.pipeline",
    "plan": "layerbuild.builder.plan",
    "build": "layerbuild.builder.build",
    "bld": "layerbuild.builder.build",
    "report": "layerbuild.builder.report",
    "run": "layerbuild.runners",
    "local": "layerbuild.runners.local",
    "docker": "layerbuild.runners.docker",
    "conf": "layerbuild.config",
    "df": "layerbuild.dockerfile",
}

# Top-level modules within layerbuild for auto-prefixing
KNOWN_TOP_MODULES = {
    "builder",
    "runners",
    "datacls",
    "utils",
    "config",
    "dockerfile",
    "exceptions",
}

LOG_LEVELS_ENV = "LBUILD_LOG_LEVELS"

# --- Filenames and Paths ---
DOCKERFILE_NAME = "Dockerfile"
REPORT_FILENAME = "build-report.yml"
OUTPUT_DIR = "output"
DEFAULT_WORKDIR = "/"
DEFAULT_TAG = "latest"

# --- Steps ---
STEP_ACTIONS = ("run", "copy", "install")
SHELL_PREFIX = ["/bin/sh", "-c"]

# Non-interactive install command per package manager.
# Packages are appended after the listed arguments.
PACKAGE_MANAGERS = {
    "pacman": ["pacman", "-Sy", "--noconfirm", "--needed"],
    "apt": ["apt-get", "install", "-y", "--no-install-recommends"],
    "apt-get": ["apt-get", "install", "-y", "--no-install-recommends"],
    "apk": ["apk", "add", "--no-cache"],
    "dnf": ["dnf", "install", "-y"],
    "yum": ["yum", "install", "-y"],
    "zypper": ["zypper", "--non-interactive", "install"],
}

# apt needs a fresh index before installing
PACKAGE_MANAGER_PRELUDE = {
    "apt": "apt-get update",
    "apt-get": "apt-get update",
}

# Base image name prefix -> default package manager
DEFAULT_MANAGERS = {
    "archlinux": "pacman",
    "manjaro": "pacman",
    "ubuntu": "apt",
    "debian": "apt",
    "alpine": "apk",
    "fedora": "dnf",
    "rockylinux": "dnf",
    "almalinux": "dnf",
    "centos": "yum",
    "opensuse": "zypper",
}

# --- Runners ---
RUNNER_SCRIPTED = "scripted"
RUNNER_LOCAL = "local"
RUNNER_DOCKER = "docker"

# Lines of step output kept in failure messages and reports
OUTPUT_TAIL_LINES = 20
