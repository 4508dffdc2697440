"""
Collaborators the lifecycle services depend on, bundled so routes and the
sweeper receive one object built by the composition root (deps.build_services).
"""
from dataclasses import dataclass, field

from gateways.base import GatewayRegistry
from services.deferred import DeferredChecks
from services.loyalty_service import LoyaltyLedger
from services.notifications import LoggingNotificationSink, NotificationSink
from services.voucher_service import VoucherChecker


@dataclass
class ServiceContext:
    gateways: GatewayRegistry
    notifier: NotificationSink = field(default_factory=LoggingNotificationSink)
    loyalty: LoyaltyLedger = field(default_factory=LoyaltyLedger)
    vouchers: VoucherChecker = field(default_factory=VoucherChecker)
    deferred: DeferredChecks | None = None

    async def aclose(self) -> None:
        if self.deferred is not None:
            await self.deferred.close()
