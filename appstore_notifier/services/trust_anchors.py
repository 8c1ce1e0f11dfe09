"""
Apple root certificate discovery.

Reads trust anchors (AppleRootCA-G3.cer etc.) from a directory on disk.
"""

from pathlib import Path

from structlog import get_logger

from appstore_notifier.exceptions import ConfigurationError

logger = get_logger(__name__)

CERTIFICATE_SUFFIXES = frozenset({".cer", ".crt", ".pem", ".der"})


def resolve_root_ca_directory(root_ca_dir: str) -> Path:
    """Resolve a relative directory against the working directory."""
    path = Path(root_ca_dir)
    if path.is_absolute():
        return path
    return Path.cwd() / path


def load_root_certificates(root_ca_dir: str) -> list[bytes]:
    """
    Load every certificate file in the directory, ordered by file name.

    Args:
        root_ca_dir: Directory holding .cer/.crt/.pem/.der files

    Returns:
        Raw certificate bytes

    Raises:
        ConfigurationError: If the directory is missing or holds no certificates
    """
    directory = resolve_root_ca_directory(root_ca_dir)

    if not directory.is_dir():
        raise ConfigurationError(
            f"Apple root CA directory not found: {directory}. Add Apple root certificates to this folder."
        )

    cert_files = sorted(
        path
        for path in directory.iterdir()
        if path.is_file() and path.suffix.lower() in CERTIFICATE_SUFFIXES
    )
    if not cert_files:
        raise ConfigurationError(
            f"No Apple root certificates found in {directory}. Add .cer/.crt/.pem/.der files."
        )

    logger.info("apple_root_certificates_loaded", directory=str(directory), count=len(cert_files))
    return [path.read_bytes() for path in cert_files]
