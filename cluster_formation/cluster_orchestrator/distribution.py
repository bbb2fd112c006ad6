"""
Distribution archives - unpacks a server distribution into a node directory
"""
import logging
import tarfile
import zipfile
from pathlib import Path
from typing import Optional

from ..errors import ConfigurationError, StageFailureError
from ..interfaces import IDistributionArchive
from ..models import DistributionKind

logger = logging.getLogger(__name__)


class ZipArchive(IDistributionArchive):
    """Server distribution shipped as a .zip"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def extract_into(self, destination: Path) -> None:
        with zipfile.ZipFile(self.path) as archive:
            archive.extractall(destination)


class TarGzArchive(IDistributionArchive):
    """Server distribution shipped as a gzip compressed tarball"""

    def __init__(self, path: Path):
        self.path = Path(path)

    def extract_into(self, destination: Path) -> None:
        with tarfile.open(self.path, mode='r:gz') as archive:
            if hasattr(tarfile, 'data_filter'):
                archive.extractall(destination, filter='data')
            else:
                archive.extractall(destination)


ARCHIVE_TYPES = {
    DistributionKind.ZIP: ZipArchive,
    DistributionKind.TAR: TarGzArchive,
}


def open_distribution(kind: DistributionKind, path: Optional[str]) -> IDistributionArchive:
    """Select the archive reader for a distribution kind"""
    if kind not in ARCHIVE_TYPES:
        raise ConfigurationError(f"Unknown distribution: {kind}")
    if not path:
        raise ConfigurationError("distribution_path is not set")
    return ARCHIVE_TYPES[kind](Path(path))


def extract_distribution(archive: IDistributionArchive, destination: Path, stage: str = "extract") -> None:
    """Unpack the archive, turning reader errors into a stage failure"""
    logger.info(f"Extracting {getattr(archive, 'path', archive)} into {destination}")
    destination.mkdir(parents=True, exist_ok=True)
    try:
        archive.extract_into(destination)
    except (OSError, zipfile.BadZipFile, tarfile.TarError) as e:
        raise StageFailureError(stage, f"Could not extract distribution: {e}")
