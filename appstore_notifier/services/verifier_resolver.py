"""
Verifier Resolver - finds the tenant and environment an envelope verifies under.

Tenants are tried in configured order; for each tenant production is tried
before sandbox. The first successful, bundle-consistent verification wins.

Verifier construction parses the trust anchors, so verifier pairs are cached
for the lifetime of the VerifierCache object.
"""

from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any

from appstoreserverlibrary.models.Environment import Environment
from appstoreserverlibrary.signed_data_verifier import SignedDataVerifier
from structlog import get_logger

from appstore_notifier.exceptions import ConfigurationError, NotificationVerificationError
from appstore_notifier.models.domain import TenantConfig
from appstore_notifier.observability.metrics import metrics
from appstore_notifier.services.signed_payload import (
    extract_candidate_bundle_id,
    read_bundle_id,
)
from appstore_notifier.services.trust_anchors import resolve_root_ca_directory

logger = get_logger(__name__)

VerifierFactory = Callable[[list[bytes], bool, Environment, str, int | None], SignedDataVerifier]


def create_signed_data_verifier(
    root_certificates: list[bytes],
    enable_online_checks: bool,
    environment: Environment,
    bundle_id: str,
    app_apple_id: int | None,
) -> SignedDataVerifier:
    """Build a library verifier. Apple requires app_apple_id only for production."""
    return SignedDataVerifier(
        root_certificates=root_certificates,
        enable_online_checks=enable_online_checks,
        environment=environment,
        bundle_id=bundle_id,
        app_apple_id=app_apple_id,
    )


@dataclass(frozen=True)
class VerifierCacheKey:
    """Composite identity of a verifier pair."""

    bundle_id: str
    app_apple_id: int
    enable_online_checks: bool
    root_ca_dir: str


@dataclass(frozen=True)
class VerifierPair:
    """One verifier per App Store environment."""

    production: SignedDataVerifier
    sandbox: SignedDataVerifier

    def in_order(self) -> tuple[tuple[Environment, SignedDataVerifier], ...]:
        """Production first, then sandbox."""
        return ((Environment.PRODUCTION, self.production), (Environment.SANDBOX, self.sandbox))


class VerifierCache:
    """
    Process-lifetime cache of verifier pairs.

    Entries are never evicted. Two requests racing on the same key may both
    build a pair; setdefault keeps the first one stored and both are equivalent.
    """

    def __init__(self, factory: VerifierFactory = create_signed_data_verifier) -> None:
        self._factory = factory
        self._entries: dict[VerifierCacheKey, VerifierPair] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get_or_create(self, key: VerifierCacheKey, root_certificates: list[bytes]) -> VerifierPair:
        """Return the cached pair for key, building it on first use."""
        cached = self._entries.get(key)
        if cached is not None:
            return cached

        pair = VerifierPair(
            production=self._factory(
                root_certificates,
                key.enable_online_checks,
                Environment.PRODUCTION,
                key.bundle_id,
                key.app_apple_id,
            ),
            sandbox=self._factory(
                root_certificates,
                key.enable_online_checks,
                Environment.SANDBOX,
                key.bundle_id,
                None,
            ),
        )
        logger.info(
            "verifier_pair_created",
            bundle_id=key.bundle_id,
            app_apple_id=key.app_apple_id,
            online_checks=key.enable_online_checks,
        )
        return self._entries.setdefault(key, pair)


@dataclass(frozen=True)
class ResolvedEnvelope:
    """Outcome of a successful resolution."""

    tenant: TenantConfig
    environment: Environment
    verifier: SignedDataVerifier
    payload: Any
    bundle_id: str | None


class VerifierResolver:
    """Resolves which tenant and environment a signed envelope belongs to."""

    def __init__(
        self,
        cache: VerifierCache,
        root_certificates: Sequence[bytes],
        root_ca_dir: str,
        enable_online_checks: bool = False,
    ) -> None:
        """
        Args:
            cache: Shared verifier cache
            root_certificates: Trust anchors as raw certificate bytes
            root_ca_dir: Directory the anchors came from (part of the cache key)
            enable_online_checks: Whether verifiers perform OCSP checks

        Raises:
            ConfigurationError: If no trust anchors are supplied
        """
        if not root_certificates:
            raise ConfigurationError("No Apple root certificates supplied")
        self._cache = cache
        self._root_certificates = list(root_certificates)
        self._root_ca_dir = str(resolve_root_ca_directory(root_ca_dir))
        self._enable_online_checks = enable_online_checks

    def _cache_key(self, bundle_id: str, app_apple_id: int) -> VerifierCacheKey:
        return VerifierCacheKey(
            bundle_id=bundle_id,
            app_apple_id=app_apple_id,
            enable_online_checks=self._enable_online_checks,
            root_ca_dir=self._root_ca_dir,
        )

    def resolve(self, signed_payload: str, tenants: Sequence[TenantConfig]) -> ResolvedEnvelope:
        """
        Verify an envelope against the tenants in order.

        Args:
            signed_payload: Raw JWS envelope
            tenants: Ordered tenants; first match wins

        Returns:
            The winning tenant, environment, verifier and decoded payload

        Raises:
            NotificationVerificationError: If no tenant yields a verified,
                bundle-consistent payload
        """
        last_error: BaseException | None = None

        for tenant in tenants:
            bundle_id = tenant.bundle_id
            if bundle_id is None:
                candidate = extract_candidate_bundle_id(signed_payload)
                bundle_id = candidate.value if candidate else None
            if bundle_id is None:
                last_error = ConfigurationError(
                    "Could not determine bundleId for verification. "
                    "Set APPLE_BUNDLE_ID or provide bundleId in APPLE_APPS_JSON."
                )
                logger.warning("verifier_bundle_id_unresolved", tenant=tenant.identity)
                continue

            pair = self._cache.get_or_create(
                self._cache_key(bundle_id, tenant.app_apple_id), self._root_certificates
            )

            for environment, verifier in pair.in_order():
                try:
                    payload = verifier.verify_and_decode_notification(signed_payload)
                except Exception as exc:
                    last_error = exc
                    metrics.record_verification_attempt(environment.value, success=False)
                    logger.debug(
                        "verification_attempt_failed",
                        tenant=tenant.identity,
                        environment=environment.value,
                        error=str(exc),
                    )
                    continue

                metrics.record_verification_attempt(environment.value, success=True)

                decoded_bundle_id = read_bundle_id(payload)
                if tenant.bundle_id is not None and decoded_bundle_id != tenant.bundle_id:
                    last_error = NotificationVerificationError(
                        f"Bundle ID mismatch. Expected '{tenant.bundle_id}' but got '{decoded_bundle_id}'"
                    )
                    logger.warning(
                        "verification_bundle_mismatch",
                        tenant=tenant.identity,
                        decoded_bundle_id=decoded_bundle_id,
                    )
                    break

                return ResolvedEnvelope(
                    tenant=tenant,
                    environment=environment,
                    verifier=verifier,
                    payload=payload,
                    bundle_id=decoded_bundle_id,
                )

        raise NotificationVerificationError(
            "Unable to verify Apple signed payload for any configured app", last_error=last_error
        )
