# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_fortress

"""
Main entry point for CoReason Fortress.

This module exposes the `Fortress` class, which wires the security pipeline
(audit log, allowlist, prompt guard, encrypted persistence, safety numbers,
consent, agent) from `Settings`, and the `coreason-fortress` command line.
"""

import argparse
import json
import sys
from typing import List, Optional

from coreason_fortress import __version__
from coreason_fortress.agent import Agent, ToolExecutor
from coreason_fortress.allowlist import AllowlistGate
from coreason_fortress.audit import AuditLogger
from coreason_fortress.config import Settings
from coreason_fortress.consent import CONSENT_FILE, ConsentStore
from coreason_fortress.doctor import format_doctor_results, run_security_doctor
from coreason_fortress.erasure import erase_contact
from coreason_fortress.exceptions import ConfigurationError
from coreason_fortress.gateway_auth import GatewayAuth, generate_token
from coreason_fortress.llm import HttpLLMClient, LLMClient, RetryingLLMClient, UnconfiguredLLMClient
from coreason_fortress.models import (
    AuthResult,
    ChannelType,
    ErasureReport,
    IncomingMessage,
    ManagedSession,
    PipelineResult,
    SessionValidation,
)
from coreason_fortress.persistence import StatePersistence
from coreason_fortress.pipeline import MessagePipeline
from coreason_fortress.retention import RetentionReport, enforce_retention
from coreason_fortress.safety_numbers import STORE_FILE, SafetyNumberStore
from coreason_fortress.sessions import SessionManager
from coreason_fortress.utils.logger import logger


class Fortress:
    """
    The assembled security stack.
    Coordinates the pipeline gates, the agent and the encrypted state stores.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        llm: Optional[LLMClient] = None,
        tool_executor: Optional[ToolExecutor] = None,
        audit_logger: Optional[AuditLogger] = None,
    ) -> None:
        """
        Initializes every component and restores persisted sessions.

        Args:
            settings: Configuration. Read from the environment when omitted.
            llm: LLM backend. Built from `llm_url` settings when omitted.
            tool_executor: Executes tool calls requested by the model.
            audit_logger: Audit sink. Built from `audit_log_path` when omitted.
        """
        self.settings = settings or Settings()
        self.audit_log = audit_logger or AuditLogger(self.settings.audit_path)
        state = self.settings.state_path
        encryption_key = self.settings.secret("encryption_key")

        self.gateway_auth = GatewayAuth(audit_logger=self.audit_log)
        self.allowlist = AllowlistGate(audit_logger=self.audit_log)
        self.session_manager = SessionManager(audit_logger=self.audit_log)
        self.safety_numbers = SafetyNumberStore(state / STORE_FILE, audit_logger=self.audit_log)

        self.persistence: Optional[StatePersistence] = None
        self.consent: Optional[ConsentStore] = None
        if encryption_key:
            self.persistence = StatePersistence(state, encryption_key, audit_logger=self.audit_log)
            self.consent = ConsentStore(state / CONSENT_FILE, encryption_key, audit_logger=self.audit_log)
        else:
            logger.warning("No encryption key: sessions will not persist across restarts")

        self._owned_llm: Optional[HttpLLMClient] = None
        if llm is None:
            llm = self._build_llm()

        self.agent = Agent(
            llm=llm,
            system_prompt=self.settings.system_prompt,
            tool_executor=tool_executor,
            max_context_messages=self.settings.max_context_messages,
            max_session_age=self.settings.max_session_age,
            persistence=self.persistence,
            audit_logger=self.audit_log,
        )
        self.pipeline = MessagePipeline(
            agent=self.agent,
            allowlist=self.allowlist,
            allowlist_configs={ChannelType.SIGNAL: self.settings.signal_allowlist()},
            safety_numbers=self.safety_numbers if self.settings.signal_enabled else None,
            prompt_guard_enabled=self.settings.prompt_guard_enabled,
            audit_logger=self.audit_log,
        )

        self.agent.restore_all_sessions()
        self.audit_log.info("fortress_initialized", details={"version": __version__})

    def _build_llm(self) -> LLMClient:
        if not self.settings.llm_url:
            logger.warning("No LLM backend configured; replies will be error messages")
            return UnconfiguredLLMClient()
        self._owned_llm = HttpLLMClient(
            url=self.settings.llm_url,
            api_key=self.settings.secret("llm_api_key"),
            model=self.settings.llm_model,
            timeout=self.settings.llm_timeout,
            max_tokens=self.settings.llm_max_tokens,
        )
        return RetryingLLMClient(self._owned_llm, audit_logger=self.audit_log)

    def authenticate(self, provided: Optional[str], ip: str) -> AuthResult:
        return self.gateway_auth.authenticate_request(provided, self.settings.secret("gateway_token"), ip)

    def create_session(self, contact_id: str, channel: ChannelType) -> ManagedSession:
        """Mints a managed session that expires after `max_session_age` seconds."""
        return self.session_manager.create_session(contact_id, channel, self.settings.max_session_age)

    def validate_session(self, session_id: str, contact_id: str, channel: ChannelType) -> SessionValidation:
        return self.session_manager.validate_session(session_id, contact_id, channel)

    async def handle(self, msg: IncomingMessage) -> PipelineResult:
        return await self.pipeline.process(msg)

    def erase(self, contact_id: str) -> ErasureReport:
        """
        Erases a contact everywhere.

        Raises:
            ConfigurationError: If no encryption key is configured.
        """
        if self.persistence is None:
            raise ConfigurationError("OPENCLAW_ENCRYPTION_KEY is missing. It is required for erasure.")
        return erase_contact(
            contact_id,
            self.persistence,
            safety_numbers=self.safety_numbers,
            consent=self.consent,
            agent=self.agent,
            audit_logger=self.audit_log,
        )

    def verify(self, contact_id: str) -> bool:
        """Clears a safety-number suspension after out-of-band verification."""
        return self.safety_numbers.clear_suspension(contact_id)

    def enforce_retention(self) -> RetentionReport:
        return enforce_retention(self.settings.state_path, self.settings.retention(), audit_logger=self.audit_log)

    async def aclose(self) -> None:
        if self._owned_llm is not None:
            await self._owned_llm.aclose()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="coreason-fortress", description="OpenClaw Fortress security gateway")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("doctor", help="Run the security health checks")

    token = sub.add_parser("generate-token", help="Print a new gateway token")
    token.add_argument("--bytes", type=int, default=32, dest="nbytes")

    audit_view = sub.add_parser("audit-view", help="Show recent audit entries")
    audit_view.add_argument("-n", "--lines", type=int, default=50)

    erase = sub.add_parser("erase", help="Erase all stored data for a contact")
    erase.add_argument("contact")

    verify = sub.add_parser("verify", help="Clear a safety-number suspension")
    verify.add_argument("contact")

    sub.add_parser("retention", help="Purge state files past their retention period")

    serve = sub.add_parser("serve", help="Run the gateway")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Runs the CLI. Returns the process exit code."""
    args = _build_parser().parse_args(argv)
    settings = Settings()

    if args.command == "generate-token":
        print(generate_token(args.nbytes))
        return 0

    if args.command == "doctor":
        results = run_security_doctor(settings, AuditLogger(settings.audit_path))
        print(format_doctor_results(results), end="")
        return 1 if any(r.status.value == "FAIL" for r in results) else 0

    if args.command == "audit-view":
        for entry in AuditLogger(settings.audit_path).tail(args.lines):
            print(json.dumps(entry, ensure_ascii=False))
        return 0

    if args.command == "serve":
        import uvicorn

        from coreason_fortress.server import create_app

        fortress = Fortress(settings)
        uvicorn.run(
            create_app(fortress),
            host=args.host or settings.gateway_host,
            port=args.port or settings.gateway_port,
        )
        return 0

    fortress = Fortress(settings)
    if args.command == "erase":
        try:
            report = fortress.erase(args.contact)
        except ConfigurationError as e:
            print(str(e), file=sys.stderr)
            return 2
        print(f"Erased {report.files_deleted} file(s) from: {', '.join(report.locations) or 'nowhere'}")
        return 0
    if args.command == "verify":
        if fortress.verify(args.contact):
            print(f"Suspension cleared for {args.contact}")
            return 0
        print(f"No safety number on record for {args.contact}", file=sys.stderr)
        return 1
    if args.command == "retention":
        result = fortress.enforce_retention()
        print(f"Purged {result.total_purged} file(s): {result.breakdown}")
        return 0

    return 2  # pragma: no cover


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
