from __future__ import annotations

import logging

from bucket_manager.errors import MismatchError, NotConfigured
from bucket_manager.models import StoreIdentity
from bucket_manager.services.gateway import ObjectStoreGateway

log = logging.getLogger("bucket_manager.connectivity")


class ConnectivityValidator:
    def __init__(self, gateway: ObjectStoreGateway):
        self._gateway = gateway

    def check_identity(self, candidate: StoreIdentity) -> StoreIdentity:
        expected = self._gateway.identity
        if expected is None:
            raise NotConfigured()
        if candidate.bucket_name != expected.bucket_name:
            raise MismatchError("bucket_name", expected.bucket_name, candidate.bucket_name)
        if candidate.region != expected.region:
            raise MismatchError("region", expected.region, candidate.region)
        return expected

    async def validate(self, candidate: StoreIdentity) -> None:
        """
        Identity check first (no remote call on mismatch), then a one-key listing to
        prove the bucket is reachable with the configured credentials. Remote failures
        propagate unchanged.
        """
        expected = self.check_identity(candidate)
        await self._gateway.list_page("", max_keys=1)
        log.info("connection_ok bucket=%s region=%s", expected.bucket_name, expected.region)
