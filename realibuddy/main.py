"""Interactive one-shot claim checker."""

import asyncio
import logging

from .domain.errors import InvalidCommandError
from .domain.models.messages import (
    ActuationDelivered,
    ErrorMessage,
    FactCheckResultMessage,
    SafetyStatus,
    ServerMessage,
)
from .infrastructure.config import RealiBuddyConfig
from .infrastructure.dependencies import ServiceContainer


async def print_message(message: ServerMessage) -> None:
    """Render a notification for the terminal."""
    if isinstance(message, FactCheckResultMessage):
        print("\nResults:")
        print(f"Verdict: {message.verdict.value}")
        print(f"Confidence: {message.confidence:.2%}")
        print(f"\nEvidence: {message.evidence}")
    elif isinstance(message, ActuationDelivered):
        print(f"\n⚡ Stimulus delivered at intensity {message.intensity}: {message.reason}")
    elif isinstance(message, SafetyStatus):
        state = "armed" if message.can_actuate else "blocked"
        print(f"Safety: {message.actuation_count} actuations on record, {state}")
    elif isinstance(message, ErrorMessage):
        print(f"\nError: {message.message}")


async def main():
    """Run the claim checker."""
    config = RealiBuddyConfig.from_env()
    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    print("RealiBuddy - fact-check a statement, with rate-limited actuation")
    print("----------------------------------------------------------------")

    container = ServiceContainer(config=config)
    await container.startup()

    try:
        orchestrator = container.create_orchestrator(print_message, require_stt=False)
    except RuntimeError as e:
        print(f"Cannot start: {e}")
        await container.shutdown()
        return

    await orchestrator.send_safety_status()

    try:
        while True:
            # Get statement from user
            statement = await asyncio.to_thread(
                input, "\nEnter a statement to fact-check (or 'quit' to exit): "
            )
            if statement.lower() in ('quit', 'exit', 'q'):
                break

            print("\nChecking facts...")
            try:
                await orchestrator.check_claim(statement)
            except InvalidCommandError as e:
                print(f"\nError: {e}")

    finally:
        # Clean up
        await orchestrator.close()
        await container.shutdown()


def run() -> None:
    """Console entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    run()
