"""
AWS EC2 provisioner
"""
from __future__ import annotations

import base64
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, cast

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError

from ...core.constants import (
    DEFAULT_SECURITY_GROUP,
    DEFAULT_SSH_PORT,
    DEFAULT_TAG_KEY,
    DEFAULT_TAG_VALUE,
    PUBLIC_IP_URL,
    SSH_KEY_MODE,
)
from ...core.exceptions import ConfigError, ProvisionError
from ...core.interfaces import Provisioner
from ...core.logging import get_logger
from ...domain.instance.models import InstanceDescription, LaunchSpec, ProviderState

logger = get_logger(__name__)

_QUOTA_CODES = {
    "InstanceLimitExceeded",
    "VcpuLimitExceeded",
    "InsufficientInstanceCapacity",
    "MaxSpotInstanceCountExceeded",
}
_AUTH_CODES = {
    "AuthFailure",
    "UnauthorizedOperation",
    "InvalidClientTokenId",
    "ExpiredToken",
    "RequestExpired",
    "OptInRequired",
}
_LISTED_STATES = ["pending", "running", "stopping", "stopped"]


def _error_code(exc: Exception) -> str:
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code", "")
    return ""


def _provision_error(action: str, exc: Exception) -> ProvisionError:
    code = _error_code(exc)
    if code in _QUOTA_CODES:
        kind = ProvisionError.Kind.QUOTA
    elif code in _AUTH_CODES or isinstance(exc, NoCredentialsError):
        kind = ProvisionError.Kind.AUTH
    else:
        kind = ProvisionError.Kind.FAILED
    return ProvisionError(f"Failed to {action}: {exc}", kind=kind)


def fetch_public_ip(url: str = PUBLIC_IP_URL, timeout: float = 10.0) -> str:
    """Return this machine's public IPv4 address as seen by AWS"""
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as exc:
        raise ProvisionError(
            f"Cannot determine public IP from {url}: {exc}",
            kind=ProvisionError.Kind.FAILED,
            hint="check network access, or pre-create the security group ingress rule",
        ) from exc
    return response.text.strip()


def encode_user_data(script: str) -> str:
    return base64.b64encode(script.encode("utf-8")).decode("utf-8")


class Ec2Provisioner(Provisioner):
    """
    Provision instances with boto3.

    Every resource created here carries the ``application`` tag so that
    ``list`` and later cleanups can find it.
    """

    def __init__(
        self,
        region: str,
        profile: Optional[str] = None,
        tag_key: str = DEFAULT_TAG_KEY,
        tag_value: str = DEFAULT_TAG_VALUE,
        client: Any = None,
    ):
        self.region = region
        self.tag_key = tag_key
        self.tag_value = tag_value
        if client is None:
            try:
                session = boto3.session.Session(profile_name=profile, region_name=region)
                client = session.client("ec2")
            except BotoCoreError as exc:
                raise ProvisionError(
                    f"Cannot create EC2 client for profile {profile!r}: {exc}",
                    kind=ProvisionError.Kind.AUTH,
                ) from exc
        self.ec2 = client

    def _tag_specification(self, resource_type: str, extra: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        tags = [{"Key": self.tag_key, "Value": self.tag_value}]
        for key, value in (extra or {}).items():
            tags.append({"Key": key, "Value": value})
        return {"ResourceType": resource_type, "Tags": tags}

    # --------------------
    # Provisioner interface
    # --------------------
    def launch(self, spec: LaunchSpec) -> str:
        request: Dict[str, Any] = {
            "ImageId": spec.image_id,
            "InstanceType": spec.instance_type,
            "MinCount": 1,
            "MaxCount": 1,
            "TagSpecifications": [
                self._tag_specification("instance", {"Name": spec.name} if spec.name else None)
            ],
            "InstanceInitiatedShutdownBehavior": "terminate",
        }
        if spec.key_name:
            request["KeyName"] = spec.key_name
        if spec.security_groups:
            request["SecurityGroups"] = spec.security_groups
        if spec.user_data:
            request["UserData"] = encode_user_data(spec.user_data)

        try:
            response: Dict[str, Any] = self.ec2.run_instances(**request)
        except (ClientError, BotoCoreError) as exc:
            raise _provision_error("launch EC2 instance", exc) from exc
        instances = cast(List[Dict[str, Any]], response.get("Instances", []))
        if not instances or not isinstance(instances[0].get("InstanceId"), str):
            raise ProvisionError(
                "run_instances response missing InstanceId",
                kind=ProvisionError.Kind.FAILED,
            )
        return instances[0]["InstanceId"]

    def describe(self, instance_id: str) -> InstanceDescription:
        instance = self._describe_raw(instance_id)
        state = ProviderState.parse(instance.get("State", {}).get("Name"))
        address = instance.get("PublicDnsName") or instance.get("PublicIpAddress") or None
        return InstanceDescription(state=state, address=address)

    def _describe_raw(self, instance_id: str) -> Dict[str, Any]:
        try:
            response: Dict[str, Any] = self.ec2.describe_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as exc:
            if _error_code(exc) == "InvalidInstanceID.NotFound":
                # eventual consistency right after run_instances, or long gone
                return {"State": {"Name": ProviderState.MISSING.value}}
            raise _provision_error(f"describe instance {instance_id}", exc) from exc
        reservations = cast(List[Dict[str, Any]], response.get("Reservations", []))
        if not reservations or not reservations[0].get("Instances"):
            raise ProvisionError(
                f"No instances returned for id {instance_id}",
                kind=ProvisionError.Kind.FAILED,
            )
        return reservations[0]["Instances"][0]

    def terminate(self, instance_id: str) -> None:
        try:
            self.ec2.terminate_instances(InstanceIds=[instance_id])
        except (ClientError, BotoCoreError) as exc:
            raise _provision_error(f"terminate instance {instance_id}", exc) from exc
        logger.info(f"Termination requested for {instance_id}")

    def tag(self, instance_id: str, labels: Dict[str, str]) -> None:
        try:
            self.ec2.create_tags(
                Resources=[instance_id],
                Tags=[{"Key": key, "Value": value} for key, value in labels.items()],
            )
        except (ClientError, BotoCoreError) as exc:
            raise _provision_error(f"tag instance {instance_id}", exc) from exc

    def list_instances(self) -> List[Dict[str, Any]]:
        try:
            paginator = self.ec2.get_paginator("describe_instances")
            pages = paginator.paginate(Filters=[
                {"Name": f"tag:{self.tag_key}", "Values": [self.tag_value]},
                {"Name": "instance-state-name", "Values": _LISTED_STATES},
            ])
            raw = [
                instance
                for page in pages
                for reservation in page.get("Reservations", [])
                for instance in reservation.get("Instances", [])
            ]
        except (ClientError, BotoCoreError) as exc:
            raise _provision_error("list instances", exc) from exc

        rows = []
        for instance in raw:
            name = next(
                (t["Value"] for t in instance.get("Tags", []) if t.get("Key") == "Name"),
                None,
            )
            rows.append({
                "id": instance.get("InstanceId"),
                "name": name,
                "type": instance.get("InstanceType"),
                "state": instance.get("State", {}).get("Name"),
                "address": instance.get("PublicDnsName") or instance.get("PublicIpAddress"),
                "launched_at": instance.get("LaunchTime"),
            })
        return rows

    # --------------------
    # Bulk instance control
    # --------------------
    def _bulk(self, action: str, call: str, instance_ids: List[str], waiter: Optional[str]) -> None:
        ids = list(instance_ids)
        if not ids:
            return
        try:
            getattr(self.ec2, call)(InstanceIds=ids)
            if waiter:
                logger.info(f"Waiting for {', '.join(ids)} to be {waiter.split('_', 1)[1]}")
                self.ec2.get_waiter(waiter).wait(InstanceIds=ids)
        except (ClientError, BotoCoreError) as exc:
            raise _provision_error(f"{action} {', '.join(ids)}", exc) from exc
        logger.info(f"{action.capitalize()} requested for {', '.join(ids)}")

    def terminate_instances(self, instance_ids: List[str], wait: bool = False) -> None:
        self._bulk("terminate", "terminate_instances", instance_ids, "instance_terminated" if wait else None)

    def stop_instances(self, instance_ids: List[str], wait: bool = False) -> None:
        self._bulk("stop", "stop_instances", instance_ids, "instance_stopped" if wait else None)

    def start_instances(self, instance_ids: List[str], wait: bool = False) -> None:
        self._bulk("start", "start_instances", instance_ids, "instance_running" if wait else None)

    # --------------------
    # Access prerequisites
    # --------------------
    def _find_key_pair(self, key_name: str) -> bool:
        try:
            response = self.ec2.describe_key_pairs(KeyNames=[key_name])
        except ClientError as exc:
            if _error_code(exc) == "InvalidKeyPair.NotFound":
                return False
            raise _provision_error(f"describe key pair {key_name}", exc) from exc
        except BotoCoreError as exc:
            raise _provision_error(f"describe key pair {key_name}", exc) from exc
        return bool(response.get("KeyPairs"))

    def _find_security_group(self, name: str) -> Optional[str]:
        try:
            response = self.ec2.describe_security_groups(GroupNames=[name])
        except ClientError as exc:
            if _error_code(exc) == "InvalidGroup.NotFound":
                return None
            raise _provision_error(f"describe security group {name}", exc) from exc
        except BotoCoreError as exc:
            raise _provision_error(f"describe security group {name}", exc) from exc
        groups = response.get("SecurityGroups", [])
        return groups[0]["GroupId"] if groups else None

    def ensure_key_pair(self, key_name: str, key_path: Path) -> Path:
        """
        Make sure the named key pair exists and its private key is on disk.

        A missing key pair is created and its private key written with
        owner-read-only permissions.

        Raises:
            ConfigError: If the key pair exists remotely but not locally
            ProvisionError: On API failures
        """
        key_path = Path(key_path).expanduser()
        if self._find_key_pair(key_name):
            if not key_path.exists():
                raise ConfigError(
                    f"Key pair {key_name} exists but {key_path} is missing",
                    hint="pass --key with its private key, or run 'korasi obliterate' to start over",
                )
            return key_path

        logger.info(f"Creating key pair {key_name}")
        try:
            created = self.ec2.create_key_pair(
                KeyName=key_name,
                KeyType="ed25519",
                KeyFormat="pem",
                TagSpecifications=[self._tag_specification("key-pair")],
            )
        except (ClientError, BotoCoreError) as exc:
            raise _provision_error(f"create key pair {key_name}", exc) from exc

        key_path.parent.mkdir(parents=True, exist_ok=True)
        if key_path.exists():
            os.chmod(key_path, 0o600)
        key_path.write_text(created["KeyMaterial"], encoding="utf-8")
        os.chmod(key_path, SSH_KEY_MODE)
        logger.info(f"Private key saved to {key_path}")
        return key_path

    def delete_key_pair(self, key_name: str) -> bool:
        """Delete the named key pair; False when there was none"""
        if not self._find_key_pair(key_name):
            return False
        try:
            self.ec2.delete_key_pair(KeyName=key_name)
        except (ClientError, BotoCoreError) as exc:
            raise _provision_error(f"delete key pair {key_name}", exc) from exc
        logger.info(f"Deleted key pair {key_name}")
        return True

    def ensure_security_group(
        self,
        name: str = DEFAULT_SECURITY_GROUP,
        ingress_ip: Optional[str] = None,
        port: int = DEFAULT_SSH_PORT,
    ) -> str:
        """
        Make sure an SSH security group exists and admits ``ingress_ip``.

        Returns:
            The security group id
        """
        group_id = self._find_security_group(name)
        if group_id is None:
            logger.info(f"Creating security group {name}")
            try:
                created = self.ec2.create_security_group(
                    GroupName=name,
                    Description="Allow SSH from the launching machine",
                    TagSpecifications=[self._tag_specification("security-group")],
                )
            except (ClientError, BotoCoreError) as exc:
                raise _provision_error(f"create security group {name}", exc) from exc
            group_id = created["GroupId"]

        if ingress_ip:
            self._authorize_ingress(group_id, ingress_ip, port)
        return group_id

    def delete_security_group(self, name: str = DEFAULT_SECURITY_GROUP) -> Optional[str]:
        """
        Delete the named security group.

        Instances using it must be terminated first, or AWS rejects the call
        with DependencyViolation.

        Returns:
            The deleted group id, or None when there was no such group
        """
        group_id = self._find_security_group(name)
        if group_id is None:
            return None
        try:
            self.ec2.delete_security_group(GroupId=group_id)
        except (ClientError, BotoCoreError) as exc:
            raise _provision_error(f"delete security group {name}", exc) from exc
        logger.info(f"Deleted security group {name} ({group_id})")
        return group_id

    def _authorize_ingress(self, group_id: str, ip: str, port: int) -> None:
        try:
            self.ec2.authorize_security_group_ingress(
                GroupId=group_id,
                IpPermissions=[{
                    "IpProtocol": "tcp",
                    "FromPort": port,
                    "ToPort": port,
                    "IpRanges": [{"CidrIp": f"{ip}/32"}],
                }],
            )
            logger.info(f"Authorized {ip}/32 on port {port} for {group_id}")
        except ClientError as exc:
            if _error_code(exc) == "InvalidPermission.Duplicate":
                logger.debug(f"Ingress for {ip}/32 already present on {group_id}")
                return
            raise _provision_error(f"authorize ingress on {group_id}", exc) from exc
        except BotoCoreError as exc:
            raise _provision_error(f"authorize ingress on {group_id}", exc) from exc
