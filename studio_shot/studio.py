"""Session orchestrator wiring the stores, the transform client and the manager."""

import logging
from typing import Optional

from .inference import TransformClient, UnavailableTransformClient
from .jobs import DisplayHandleRegistry, JobManager, MetadataStore, SQLiteBlobStore
from .jobs.manager import Transformer
from .jobs.sqlite import default_db_path
from .trackers import CreditBalance, ProgressTracker
from .trackers.credits import initial_credits_from_env


logger = logging.getLogger("studio.session")


class StudioShot:
    """Holds one session: a job manager plus the components it drives."""

    def __init__(
        self,
        transform: Transformer,
        db_path: Optional[str] = None,
        initial_credits: Optional[int] = None,
    ):
        """Initialize the session.

        Args:
            transform: Client used for studio transformations
            db_path: SQLite file holding blobs and the job snapshot
            initial_credits: Credits available at session start
        """
        self.db_path = db_path or default_db_path()
        self.transform = transform
        self.initial_credits = initial_credits_from_env() if initial_credits is None else initial_credits

        self._initialize_components()

    def _initialize_components(self):
        """Initialize all the specialized components."""
        self.blobs = SQLiteBlobStore(self.db_path)
        self.metadata = MetadataStore(self.db_path)
        self.handles = DisplayHandleRegistry()
        self.credits = CreditBalance(self.initial_credits)
        self.progress_tracker = ProgressTracker()
        self.manager = JobManager(
            self.blobs,
            self.metadata,
            self.transform,
            handles=self.handles,
            credits=self.credits,
            progress=self.progress_tracker,
        )

    async def start(self) -> None:
        logger.info(f"Opening studio at {self.db_path} with {self.credits.balance} credits")
        await self.manager.hydrate()

    async def stop(self) -> None:
        await self.manager.close()

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()


def build_studio_from_env(
    provider: Optional[str] = None,
    model: Optional[str] = None,
    db_path: Optional[str] = None,
    initial_credits: Optional[int] = None,
) -> StudioShot:
    """Build a session from STUDIO_* environment settings and explicit overrides."""
    try:
        client = TransformClient(provider=provider, model=model)
        logger.info(f"Using {client.provider_name} provider (model: {client.model or 'remote default'})")
    except (RuntimeError, ValueError) as e:
        logger.warning(f"Image generation unavailable: {e}")
        client = UnavailableTransformClient(str(e))
    return StudioShot(client, db_path=db_path, initial_credits=initial_credits)
