"""
Build domain objects from CLI settings
"""
import threading
from pathlib import Path
from typing import Any, Dict, Optional

from ...core.constants import CACHED_INSTANCE_KEY
from ...core.exceptions import ConfigError
from ...core.interfaces import StateStore
from ...core.logging import get_logger
from ...core.utils import generate_instance_name
from ...domain.instance.models import LaunchSpec
from ...domain.orchestrator import Orchestrator, OrchestratorOptions
from ...domain.session.models import Credentials
from ...domain.sync.ignore import GitIgnoreFilter
from ...infrastructure.aws.ec2 import Ec2Provisioner, fetch_public_ip
from ...infrastructure.ssh.connection import ParamikoConnector
from ...infrastructure.state.file_store import FileStateStore
from ..config.loader import ConfigLoader
from ..config.settings import Settings

logger = get_logger(__name__)


def load_settings(config_file: Optional[Path], overrides: Dict[str, Any]) -> Settings:
    """Merge TOML, environment and CLI values into Settings"""
    merged = ConfigLoader().load(toml_path=config_file, cli_overrides=overrides)
    return Settings.from_dict(merged)


def build_provisioner(settings: Settings) -> Ec2Provisioner:
    return Ec2Provisioner(region=settings.region, profile=settings.profile, tag_value=settings.tag)


def _require_image(settings: Settings) -> None:
    if not settings.image_id:
        raise ConfigError(
            "No image id configured",
            hint="pass --image <ami-id> or set image_id in ~/.korasi/config.toml",
        )


def build_launch_spec(settings: Settings, provisioner: Ec2Provisioner, workspace: Path) -> LaunchSpec:
    """
    Prepare everything a new instance needs before launch.

    Ensures the SSH key pair exists (writing its private key on first use)
    and that the SSH security group admits this machine's public IP.
    """
    _require_image(settings)
    provisioner.ensure_key_pair(settings.key_name, Path(settings.key_path))
    provisioner.ensure_security_group(
        settings.security_group,
        ingress_ip=fetch_public_ip(),
        port=settings.port,
    )
    return LaunchSpec(
        image_id=settings.image_id,
        instance_type=settings.instance_type,
        key_name=settings.key_name,
        security_groups=[settings.security_group],
        user_data=settings.read_setup_script(workspace),
        name=generate_instance_name(),
    )


def cached_instance_id(store: StateStore) -> str:
    record = store.load(CACHED_INSTANCE_KEY)
    if not record or not record.get("instance_id"):
        raise ConfigError(
            "No kept instance to reuse",
            hint="run once with --keep to keep an instance for later invocations",
        )
    return record["instance_id"]


def build_orchestrator(
    settings: Settings,
    workspace: Path,
    reuse: bool,
    cancel: threading.Event,
    progress: Any = None,
    state_store: Optional[StateStore] = None,
) -> Orchestrator:
    """
    Wire the EC2 provisioner, paramiko connector and instance cache.

    Only local checks happen here. Key pair and security group changes are
    deferred to the orchestrator's ``prepare`` hook so a failing local scan
    leaves the AWS account untouched.
    """
    store = state_store or FileStateStore()
    provisioner = build_provisioner(settings)

    reuse_id = cached_instance_id(store) if reuse else None
    if not reuse:
        _require_image(settings)

    def prepare() -> Optional[LaunchSpec]:
        if reuse:
            # The ingress rule is per source IP, which may have changed since
            provisioner.ensure_security_group(settings.security_group, fetch_public_ip(), settings.port)
            return None
        return build_launch_spec(settings, provisioner, workspace)

    options = OrchestratorOptions(
        workspace=workspace,
        credentials=Credentials(
            user=settings.user,
            key_path=settings.key_path,
            port=settings.port,
            timeout=settings.connect_timeout,
        ),
        prepare=prepare,
        reuse_instance_id=reuse_id,
        keep=settings.keep,
        root_folder=settings.root_folder,
        boot_timeout=settings.boot_timeout,
        poll_interval=settings.poll_interval,
        connect_retries=settings.connect_retries,
        retry_backoff=settings.retry_backoff,
        cache_labels={"region": settings.region},
    )

    def ignore_factory(root: Path) -> GitIgnoreFilter:
        return GitIgnoreFilter.from_directory(
            root,
            extra_patterns=settings.exclude,
            include_hidden=settings.include_hidden,
        )

    return Orchestrator(
        provisioner,
        ParamikoConnector(),
        options,
        ignore_factory=ignore_factory,
        state_store=store,
        cancel=cancel,
        progress=progress,
    )
