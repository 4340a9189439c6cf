"""Deployment records for finished production runs, kept in a JSON file."""

import json
import uuid
from datetime import datetime
from pathlib import Path

from shipit.config import CONFIG_DIR


DEPLOYMENTS_FILE = CONFIG_DIR / "deployments.json"


def load_deployments(path=DEPLOYMENTS_FILE) -> list[dict]:
    path = Path(path)
    if not path.exists():
        return []
    return json.loads(path.read_text())


def _write(deployments, path):
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(deployments, indent=2) + "\n")


def save_deployment(deployment, path=DEPLOYMENTS_FILE):
    """Insert or replace *deployment* (matched by ``id``)."""
    deployments = [d for d in load_deployments(path) if d["id"] != deployment["id"]]
    deployments.append(deployment)
    _write(deployments, path)


def remove_deployment(deployment_id, path=DEPLOYMENTS_FILE):
    _write([d for d in load_deployments(path) if d["id"] != deployment_id], path)


def get_deployment_by_path(project_path, path=DEPLOYMENTS_FILE):
    project_path = str(Path(project_path).resolve())
    return next((d for d in load_deployments(path) if d["projectPath"] == project_path), None)


def update_deployment_status(deployment_id, status, path=DEPLOYMENTS_FILE):
    deployments = load_deployments(path)
    for d in deployments:
        if d["id"] == deployment_id:
            d["status"] = status
            _write(deployments, path)
            return True
    return False


def deployment_record(result, request):
    """Build the stored record for a finished run."""
    now = datetime.now().isoformat(timespec="seconds")
    record = {
        "id": str(uuid.uuid4()),
        "projectPath": result.project.path,
        "projectName": result.project.name,
        "serverIds": result.server_ids,
        "serverIps": result.server_ips,
        "serverNames": result.server_names,
        "loadBalancerId": result.load_balancer_id,
        "loadBalancerIp": result.load_balancer_ip,
        "domain": result.domain,
        "location": request.location,
        "serverType": request.server_type,
        "createdAt": now,
        "lastDeployedAt": now,
        "status": "running",
    }
    if request.accessories is not None and request.accessories.enabled:
        record["accessories"] = {
            "placement": request.accessories.placement,
            "types": [a.type for a in request.accessories.accessories],
            "serverId": result.accessories_server_id,
            "serverIp": result.accessories_server_ip,
        }
    return record
