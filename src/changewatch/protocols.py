"""Protocol interfaces for the pipeline's external collaborators.

The pipeline references these protocols, not the concrete Gemini/Resend
clients. Tests use lightweight fakes; another provider can be swapped in
without touching pipeline code.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from changewatch.mailer import EmailAttachment
    from changewatch.models.analysis import AnalysisResult


class FetcherProtocol(Protocol):
    async def fetch(self, url: str) -> str: ...


class AnalyzerProtocol(Protocol):
    async def analyze(self, content: str) -> AnalysisResult | None: ...


class SpeechProtocol(Protocol):
    async def synthesize(self, text: str, voice: str) -> bytes | None: ...


class MailerProtocol(Protocol):
    @property
    def configured(self) -> bool: ...

    @property
    def default_recipient(self) -> str: ...

    async def send(
        self,
        to_address: str,
        subject: str,
        html_body: str,
        attachment: EmailAttachment | None = None,
    ) -> bool: ...
