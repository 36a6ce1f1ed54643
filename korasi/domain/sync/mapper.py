"""
Local to remote path mapping

Mapping rules:
- no destination: paths land under ``$HOME/<root folder>`` on the remote, except
  sources named through the home directory (``~/x``, ``$HOME/x``, or an absolute
  path under ``$HOME``), which mirror their home-relative path exactly
- destination given: it must already be a remote directory, it is never created
- the source's relative structure is recreated below the destination
- leading ``..`` segments of sources outside the workspace are dropped
"""
import os
import posixpath
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from typing import Callable, Optional, Tuple

from ...core.constants import DEFAULT_ROOT_FOLDER
from ...core.exceptions import PathError
from ...core.utils import expand_home, names_home


@dataclass(frozen=True)
class Anchor:
    """Where one source lands remotely"""
    source: Path
    remote_root: PurePosixPath
    parents: Tuple[PurePosixPath, ...]  # directories to create before remote_root, outermost first

    def remote_for(self, local_path: Path) -> PurePosixPath:
        """Map a path at or below the anchored source"""
        rel = Path(os.path.normpath(local_path)).relative_to(self.source)
        if not rel.parts:
            return self.remote_root
        return self.remote_root.joinpath(*rel.parts)


class PathMapper:
    """
    Pure local to remote path mapper.

    Args:
        workspace: Local workspace root
        remote_home: Home directory of the remote user; None until connected,
            which allows only ``check_local``
        local_home: Home directory of the local user
        root_folder: Name of the wrapper folder under the remote home; empty
            disables the wrapper
        is_remote_dir: Read-only check used to check an explicit destination
    """

    def __init__(
        self,
        workspace: Path,
        remote_home: Optional[PurePosixPath],
        local_home: Optional[Path] = None,
        root_folder: str = DEFAULT_ROOT_FOLDER,
        is_remote_dir: Optional[Callable[[PurePosixPath], bool]] = None,
    ):
        self.workspace = Path(os.path.normpath(Path(workspace).expanduser().absolute()))
        self.remote_home = PurePosixPath(remote_home) if remote_home is not None else None
        self.local_home = Path(os.path.normpath(local_home or Path.home()))
        self.root_folder = root_folder.strip("/")
        self.is_remote_dir = is_remote_dir

    @property
    def default_root(self) -> PurePosixPath:
        """Remote base used when no destination is given"""
        if self.root_folder:
            return self.remote_home / self.root_folder
        return self.remote_home

    def resolve_local(self, source: str) -> Path:
        """Expand and lexically normalize a source argument to an absolute path"""
        return resolve_local_source(source, self.workspace, self.local_home)

    def resolve_destination(self, destination: str) -> PurePosixPath:
        """Resolve a destination argument against the remote home"""
        expanded = expand_home(destination, Path(str(self.remote_home)))
        path = PurePosixPath(expanded)
        if not path.is_absolute():
            path = self.remote_home / path
        return PurePosixPath(posixpath.normpath(str(path)))

    def check_local(self, source: str, destination: Optional[str] = None) -> Path:
        """
        Make the placement decisions that need no remote information.

        Returns:
            The resolved local source

        Raises:
            PathError: OUTSIDE_HOME_WITHOUT_ROOT when the wrapper is disabled,
                no destination is given and the source cannot be mirrored
                under $HOME
        """
        local = self.resolve_local(source)
        if not destination and not self.root_folder and not self._mirrors_home(source, local):
            raise PathError(
                f"{local} lies outside $HOME and no root folder is configured",
                kind=PathError.Kind.OUTSIDE_HOME_WITHOUT_ROOT,
            )
        return local

    def anchor(self, source: str, destination: Optional[str] = None) -> Anchor:
        """
        Compute the remote location of a source argument.

        Args:
            source: Source path as given by the user
            destination: Optional remote destination directory

        Returns:
            Anchor for the source

        Raises:
            PathError: DST_NOT_EXIST when the destination is not a remote
                directory, OUTSIDE_HOME_WITHOUT_ROOT when the wrapper is disabled
                and the source cannot be mirrored under $HOME
        """
        if self.remote_home is None:
            raise ValueError("remote home is unknown; only check_local is available")
        local = self.check_local(source, destination)

        base: Optional[PurePosixPath] = None
        if destination:
            base = self.resolve_destination(destination)
            if self.is_remote_dir is not None and not self.is_remote_dir(base):
                raise PathError(
                    f"Destination {base} does not exist remotely or is not a directory",
                    kind=PathError.Kind.DST_NOT_EXIST,
                )

        if base is None and self._mirrors_home(source, local):
            rel = local.relative_to(self.local_home)
            return self._build(local, self.remote_home, rel.parts, synthetic=())

        synthetic: Tuple[PurePosixPath, ...] = ()
        if base is None:
            base = self.default_root
            synthetic = (base,)
        return self._build(local, base, self._relative_parts(source, local), synthetic)

    def _mirrors_home(self, source: str, local: Path) -> bool:
        if not _is_within(local, self.local_home):
            return False
        # Relative arguments are workspace paths unless the wrapper is disabled
        named_absolute = names_home(source) or Path(source).is_absolute()
        return named_absolute or not self.root_folder

    def _relative_parts(self, source: str, local: Path) -> Tuple[str, ...]:
        if _is_within(local, self.workspace):
            return local.relative_to(self.workspace).parts
        named_absolute = names_home(source) or Path(source).is_absolute()
        if named_absolute and _is_within(local, self.local_home):
            return local.relative_to(self.local_home).parts
        parts = Path(os.path.normpath(expand_home(source, self.local_home))).parts
        return tuple(p for p in parts if p not in ("..", ".", local.anchor))

    def _build(
        self,
        local: Path,
        base: PurePosixPath,
        rel_parts: Tuple[str, ...],
        synthetic: Tuple[PurePosixPath, ...],
    ) -> Anchor:
        parents = list(synthetic)
        current = base
        for part in rel_parts[:-1]:
            current = current / part
            parents.append(current)
        remote_root = base.joinpath(*rel_parts) if rel_parts else base
        if remote_root in parents:
            parents.remove(remote_root)
        return Anchor(source=local, remote_root=remote_root, parents=tuple(parents))


def resolve_local_source(source: str, workspace: Path, local_home: Optional[Path] = None) -> Path:
    """
    Expand ``~``/``$HOME`` and join relative sources onto the workspace.

    Normalization is lexical: ``..`` is collapsed without resolving symlinks.
    """
    path = Path(expand_home(source, local_home or Path.home()))
    if not path.is_absolute():
        path = Path(workspace).expanduser().absolute() / path
    return Path(os.path.normpath(path))


def map_remote_path(
    source: str,
    workspace: Path,
    remote_home: PurePosixPath,
    destination: Optional[str] = None,
    local_home: Optional[Path] = None,
    root_folder: str = DEFAULT_ROOT_FOLDER,
    is_remote_dir: Optional[Callable[[PurePosixPath], bool]] = None,
) -> PurePosixPath:
    """Map a single source path to its remote path"""
    mapper = PathMapper(
        workspace,
        remote_home,
        local_home=local_home,
        root_folder=root_folder,
        is_remote_dir=is_remote_dir,
    )
    return mapper.anchor(source, destination).remote_root


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
        return True
    except ValueError:
        return False
