from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exto.persistence.db import SessionLocal
from exto.providers.llm.base import ChatProvider
from exto.providers.payments.base import PaymentGateway
from exto.services.batches import BatchService
from exto.services.categories import CategoryRegistry, FormatRegistry
from exto.services.category_data import CategoryDataService
from exto.services.document_analysis import DocumentAnalyzer
from exto.services.export import ExportService
from exto.services.extraction import ExtractionClient
from exto.services.identity import IdentityService, RequestContextResolver, TokenVerifier
from exto.services.metering import MeterService
from exto.services.organizations import LastActiveCoalescer, OrganizationService
from exto.services.payments import PaymentService
from exto.services.scan_history import ScanHistoryService
from exto.services.scans import ScanOrchestrator


@dataclass
class Services:
    """Process-wide service graph shared by all requests of one app instance."""

    categories: CategoryRegistry
    formats: FormatRegistry
    organizations: OrganizationService
    last_active: LastActiveCoalescer
    batches: BatchService
    category_data: CategoryDataService
    scan_history: ScanHistoryService
    extraction: ExtractionClient
    analyzer: DocumentAnalyzer
    metering: MeterService
    scans: ScanOrchestrator
    payments: PaymentService
    export: ExportService
    resolver: RequestContextResolver
    identity: IdentityService
    verifier: TokenVerifier


def build_services(
    *,
    session_factory: async_sessionmaker[AsyncSession] = SessionLocal,
    llm: ChatProvider | None = None,
    gateway: PaymentGateway | None = None,
    verifier: TokenVerifier | None = None,
) -> Services:
    # Providers left as None resolve lazily from settings on first use.
    categories = CategoryRegistry(session_factory=session_factory)
    organizations = OrganizationService(session_factory=session_factory)
    batches = BatchService(session_factory=session_factory)
    category_data = CategoryDataService(
        categories=categories, organizations=organizations, session_factory=session_factory
    )
    scan_history = ScanHistoryService(category_data=category_data, session_factory=session_factory)
    extraction = ExtractionClient(provider=llm, session_factory=session_factory)
    metering = MeterService(gateway=gateway, session_factory=session_factory)
    resolver = RequestContextResolver(session_factory=session_factory)
    return Services(
        categories=categories,
        formats=FormatRegistry(session_factory=session_factory),
        organizations=organizations,
        last_active=LastActiveCoalescer(session_factory=session_factory),
        batches=batches,
        category_data=category_data,
        scan_history=scan_history,
        extraction=extraction,
        analyzer=DocumentAnalyzer(provider=llm, categories=categories, session_factory=session_factory),
        metering=metering,
        scans=ScanOrchestrator(
            categories=categories,
            extraction=extraction,
            category_data=category_data,
            batches=batches,
            metering=metering,
        ),
        payments=PaymentService(gateway=gateway, session_factory=session_factory),
        export=ExportService(categories=categories, category_data=category_data, scan_history=scan_history),
        resolver=resolver,
        identity=IdentityService(resolver=resolver, session_factory=session_factory),
        verifier=verifier or TokenVerifier(),
    )
