"""Project detection and the local artifacts Kamal needs (Dockerfile, deploy.yml, secrets)."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from shipit.errors import ToolError
from shipit.provisioning.shell import run_shell_cmd

logger = logging.getLogger(__name__)

DEFAULT_PORT = 3000


@dataclass(frozen=True)
class ProjectInfo:
    type: str  # rails | node | bun | python | generic
    name: str
    path: str
    has_dockerfile: bool
    port: int = DEFAULT_PORT


def detect_project(project_path="."):
    """Detect the project type and listening port from marker files."""
    path = Path(project_path).resolve()
    if not path.is_dir():
        raise FileNotFoundError(f"Project directory not found: {path}")

    project_type = "generic"
    port = DEFAULT_PORT

    gemfile = path / "Gemfile"
    if gemfile.exists() and "rails" in gemfile.read_text():
        project_type = "rails"
    elif (path / "bun.lockb").exists():
        project_type = "bun"
    elif (path / "package.json").exists():
        project_type = "node"
        try:
            pkg = json.loads((path / "package.json").read_text())
        except ValueError:
            pkg = {}
        start = (pkg.get("scripts") or {}).get("start", "")
        if "8080" in start:
            port = 8080
    elif (path / "pyproject.toml").exists() or (path / "requirements.txt").exists():
        project_type = "python"
        port = 8000

    return ProjectInfo(
        type=project_type,
        name=path.name,
        path=str(path),
        has_dockerfile=(path / "Dockerfile").exists(),
        port=port,
    )


# ── Dockerfile ────────────────────────────────────────────────────

_DOCKERFILES = {
    "rails": """# syntax=docker/dockerfile:1
FROM ruby:3.2-slim

WORKDIR /app

RUN apt-get update -qq && \\
    apt-get install --no-install-recommends -y build-essential libpq-dev nodejs npm && \\
    rm -rf /var/lib/apt/lists/*

COPY Gemfile Gemfile.lock ./
RUN bundle install

COPY . .

RUN bundle exec rails assets:precompile

EXPOSE {port}
CMD ["bundle", "exec", "rails", "server", "-b", "0.0.0.0"]
""",
    "bun": """FROM oven/bun:1

WORKDIR /app

COPY package.json bun.lockb ./
RUN bun install --frozen-lockfile

COPY . .

EXPOSE {port}
CMD ["bun", "run", "start"]
""",
    "node": """FROM node:20-slim

WORKDIR /app

COPY package*.json ./
RUN npm ci --omit=dev

COPY . .

EXPOSE {port}
CMD ["npm", "start"]
""",
    "python": """FROM python:3.12-slim

WORKDIR /app

COPY . .
RUN pip install --no-cache-dir .

EXPOSE {port}
CMD ["python", "-m", "app"]
""",
    "generic": """FROM ubuntu:24.04

WORKDIR /app

COPY . .

EXPOSE {port}
CMD ["./start.sh"]
""",
}


def generate_dockerfile(project):
    """Write a Dockerfile for *project* unless one exists. Returns its path."""
    dockerfile = Path(project.path) / "Dockerfile"
    if dockerfile.exists():
        return str(dockerfile)
    template = _DOCKERFILES.get(project.type, _DOCKERFILES["generic"])
    dockerfile.write_text(template.format(port=project.port))
    logger.info(f"Generated {dockerfile}")
    return str(dockerfile)


# ── Kamal config ──────────────────────────────────────────────────


def image_name(project_name, registry=None):
    """Docker Hub uses ``user/app``; other registries ``server/user/app``."""
    if not registry:
        return f"{project_name}/{project_name}"
    if registry["server"] == "docker.io":
        return f"{registry['username']}/{project_name}"
    return f"{registry['server']}/{registry['username']}/{project_name}"


def build_deploy_config(project, server_ips, domain, ssh_key_path=None, registry=None, accessories=None, accessories_host=None):
    """Return the Kamal deploy.yml contents as a dict."""
    config = {
        "service": project.name,
        "image": image_name(project.name, registry),
        "servers": list(server_ips),
        "proxy": {
            "ssl": False,
            "host": domain,
            "app_port": project.port,
            "healthcheck": {"path": "/up"},
        },
        "builder": {"arch": "amd64", "remote": True},
    }
    if registry:
        config["registry"] = {
            "server": registry["server"],
            "username": registry["username"],
            "password": ["KAMAL_REGISTRY_PASSWORD"],
        }
    if ssh_key_path:
        config["ssh"] = {"keys_only": True, "keys": [ssh_key_path]}

    if accessories is not None and accessories.enabled and accessories.accessories:
        host = accessories_host or server_ips[0]
        config["accessories"] = {}
        for acc in accessories.accessories:
            entry = {
                "image": acc.image,
                "host": host,
                "port": f"{acc.port}:{acc.port}",
                "directories": [f"data:{acc.data_dir}"],
            }
            secret = f"{acc.type.upper()}_PASSWORD"
            if acc.type == "postgres":
                entry["env"] = {"clear": {"POSTGRES_USER": acc.username, "POSTGRES_DB": acc.database}, "secret": [secret]}
            elif acc.type == "mysql":
                entry["env"] = {"clear": {"MYSQL_USER": acc.username, "MYSQL_DATABASE": acc.database}, "secret": [secret]}
            elif acc.type == "redis":
                entry["cmd"] = f"redis-server --requirepass ${secret}"
                entry["env"] = {"secret": [secret]}
            config["accessories"][acc.type] = entry
    return config


def write_deploy_config(project, server_ips, domain, **kwargs):
    """Write config/deploy.yml, keeping keys from an existing file that we do not set."""
    deploy_path = Path(project.path) / "config" / "deploy.yml"
    deploy_path.parent.mkdir(parents=True, exist_ok=True)

    existing = {}
    if deploy_path.exists():
        existing = yaml.safe_load(deploy_path.read_text()) or {}
    existing.update(build_deploy_config(project, server_ips, domain, **kwargs))

    deploy_path.write_text(yaml.safe_dump(existing, sort_keys=False))
    logger.info(f"Wrote {deploy_path}")
    return str(deploy_path)


def write_kamal_secrets(project_path, registry_password=None, accessories=None):
    """Write .kamal/secrets with the registry and accessory passwords."""
    secrets_path = Path(project_path) / ".kamal" / "secrets"
    secrets_path.parent.mkdir(parents=True, exist_ok=True)

    lines = ["# Kamal secrets - generated by ship-it"]
    if registry_password:
        lines.append(f"KAMAL_REGISTRY_PASSWORD={registry_password}")
    if accessories is not None and accessories.enabled:
        for acc in accessories.accessories:
            lines.append(f"{acc.type.upper()}_PASSWORD={acc.password}")
    secrets_path.write_text("\n".join(lines) + "\n")
    secrets_path.chmod(0o600)
    return str(secrets_path)


async def commit_config(project_path):
    """Commit the generated Kamal files; Kamal tags deploys by git commit.

    .kamal/secrets holds plain passwords and is never committed.
    """
    paths = [p for p in ("config", "Dockerfile") if (Path(project_path) / p).exists()]
    rc, _, stderr = await run_shell_cmd(["git", "add", *paths], cwd=project_path)
    if rc != 0:
        raise ToolError(f"git add failed: {stderr.strip()}", exit_code=rc)
    rc, stdout, stderr = await run_shell_cmd(
        ["git", "commit", "-m", "Configure Kamal deployment\n\nGenerated by ship-it"],
        cwd=project_path,
    )
    if rc != 0 and "nothing to commit" in stdout:
        logger.info("Kamal config already committed.")
        return
    if rc != 0:
        output = "\n".join(s for s in (stdout.strip(), stderr.strip()) if s)
        raise ToolError(f"git commit failed: {output or f'exit code {rc}'}", exit_code=rc)
