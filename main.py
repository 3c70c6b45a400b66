import logging
import os
import sys

logging.getLogger().handlers.clear()
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s │ %(levelname)-8s │ %(message)s",
    datefmt="%H:%M:%S",
)

logger = logging.getLogger(__name__)

if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "run-scheduled":
        # One pass, for an external cron: python main.py run-scheduled
        from automation_server.services.orchestrator import run_scheduled
        from videogen.clients.registry import ClientRegistry, configure_from_env

        configure_from_env()
        try:
            summary = run_scheduled()
        finally:
            ClientRegistry.close_all()
        logger.info(
            "Run %s → %s (processed=%d jobs=%d errors=%d)",
            summary.run_id,
            summary.status,
            summary.channels_processed,
            summary.jobs_created,
            summary.errors_count,
        )
        sys.exit(0 if summary.status != "error" else 1)

    import uvicorn

    from automation_server.main import app

    uvicorn.run(app, host=os.getenv("HOST", "0.0.0.0"), port=int(os.getenv("PORT", "8000")))
