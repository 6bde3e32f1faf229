"""
ACME TLS Certificate Lifecycle Manager — CLI entry point.

Usage:
  python main.py --serve              # Challenge server + boot check + hourly checks
  python main.py --once               # Boot check (load, or issue/renew) and exit
  python main.py --renew              # Force a renewal now and exit
  python main.py --status             # Print the validity decision for the stored cert
  python main.py --once --domain example.org   # Override DOMAIN for this run
"""
from __future__ import annotations

import argparse
import logging
import sys

import structlog

log = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


# ── Commands ──────────────────────────────────────────────────────────────────


def _build(domain: str | None):
    from certmanager.manager import CertificateManager
    from certmanager.scheduler import LifecycleScheduler
    from config import Settings, settings

    if domain:
        # Re-validate so --domain gets the same normalization as DOMAIN
        settings = Settings(DOMAIN=domain)
    if not settings.DOMAIN:
        log.error("No domain configured. Set DOMAIN in .env or pass --domain.")
        sys.exit(1)

    manager = CertificateManager.from_settings(settings)
    return settings, manager, LifecycleScheduler(manager)


def run_status(domain: str | None) -> int:
    _, manager, _ = _build(domain)
    material = manager.candidate()
    decision = manager.evaluate()
    if material is None:
        print(f"{manager.domain}: no certificate stored, {decision}")
    else:
        print(
            f"{manager.domain}: CN={material.common_name} issuer={material.issuer_common_name!r} "
            f"expires={material.not_after.isoformat()}: {decision}"
        )
    return 0 if decision.valid else 2


def run_once(domain: str | None) -> int:
    """Boot check with the challenge server up for the duration."""
    from certmanager.errors import FatalStartupError
    from certmanager.responder import ChallengeHttpServer

    settings, manager, scheduler = _build(domain)
    with ChallengeHttpServer(manager.responder, settings.HTTP_CHALLENGE_HOST, settings.HTTP_CHALLENGE_PORT):
        try:
            scheduler.boot()
        except FatalStartupError as exc:
            log.error("Refusing to continue without a certificate: %s", exc)
            return 1
    return 0


def run_renew(domain: str | None) -> int:
    from certmanager.errors import RenewalError
    from certmanager.responder import ChallengeHttpServer

    settings, manager, scheduler = _build(domain)
    with ChallengeHttpServer(manager.responder, settings.HTTP_CHALLENGE_HOST, settings.HTTP_CHALLENGE_PORT):
        try:
            material = scheduler.renew_now()
        except RenewalError as exc:
            log.error("Renewal failed: %s", exc)
            return 1
    log.info("Renewed %s, valid until %s", manager.domain, material.not_after.isoformat())
    return 0


def run_serve(domain: str | None) -> int:
    """Keep the challenge route up, boot, then check at the top of every hour."""
    from certmanager.errors import FatalStartupError
    from certmanager.responder import ChallengeHttpServer

    settings, manager, scheduler = _build(domain)
    server = ChallengeHttpServer(manager.responder, settings.HTTP_CHALLENGE_HOST, settings.HTTP_CHALLENGE_PORT)
    server.start()
    try:
        try:
            scheduler.boot()
        except FatalStartupError as exc:
            log.error("Refusing to serve without a certificate: %s", exc)
            return 1

        scheduler.start()
        log.info("Entering schedule loop, press Ctrl+C to stop")
        scheduler.run_forever()
    except KeyboardInterrupt:
        log.info("Interrupted, shutting down")
    finally:
        scheduler.stop()
        server.stop()
    return 0


# ── CLI ───────────────────────────────────────────────────────────────────────


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        description="ACME TLS Certificate Lifecycle Manager",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py --serve
  python main.py --once --domain example.org
  python main.py --renew
  python main.py --status
        """,
    )
    mode = parser.add_mutually_exclusive_group(required=True)
    mode.add_argument("--serve", action="store_true", help="Run the challenge server and hourly checks")
    mode.add_argument("--once", action="store_true", help="Load or obtain a certificate and exit")
    mode.add_argument("--renew", action="store_true", help="Force a renewal now and exit")
    mode.add_argument("--status", action="store_true", help="Print the stored certificate's validity")
    parser.add_argument("--domain", metavar="DOMAIN", help="Override DOMAIN for this run")

    args = parser.parse_args(argv)

    from config import settings

    configure_logging(settings.LOG_LEVEL)

    if args.status:
        code = run_status(args.domain)
    elif args.once:
        code = run_once(args.domain)
    elif args.renew:
        code = run_renew(args.domain)
    else:
        code = run_serve(args.domain)
    sys.exit(code)


if __name__ == "__main__":
    main()
