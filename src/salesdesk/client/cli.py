"""Terminal chat client for the SalesDesk API."""

from __future__ import annotations

import logging
import time
from typing import (
    Dict,
    List,
    Tuple,
)

import httpx

from salesdesk.common import (
    AnsiColors,
    colored_print,
    colored_write,
)
from salesdesk.config import settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# CLI Client
# ---------------------------------------------------------------------------
def get_user_message() -> Tuple[str, bool]:
    """
    Get a message from the user via standard input.

    Returns:
        Tuple of (user_input, success_flag)
        The success_flag is False if input couldn't be read (e.g., Ctrl+C)
    """
    import signal  # pylint: disable=import-outside-toplevel

    # Ensure SIGINT breaks out of slow system calls such as read()
    signal.siginterrupt(signal.SIGINT, True)

    try:
        user_input = input().strip()
        return user_input, True
    except (EOFError, KeyboardInterrupt):
        return "", False


def stream_chat(messages: List[Dict[str, str]], max_retries: int = 5) -> str:
    """
    POST the conversation to ``/chat`` and print the answer as it streams in.

    Connection errors are retried with exponential backoff (the API may still be starting).
    Returns the full answer text, or an empty string on failure.
    """
    api_url = f"http://localhost:{settings.API_PORT}/chat"

    for attempt in range(max_retries):
        try:
            parts: List[str] = []
            with httpx.Client(timeout=httpx.Timeout(30.0, read=None)) as client:
                with client.stream("POST", api_url, json={"messages": messages}) as response:
                    if response.status_code >= 400:
                        response.read()
                        colored_print(f"API error: {response.text}", AnsiColors.RED)
                        return ""
                    for chunk in response.iter_text():
                        parts.append(chunk)
                        colored_write(chunk, AnsiColors.YELLOW)
            print()
            return "".join(parts)
        except httpx.ConnectError:
            if attempt < max_retries - 1:
                retry_delay = 0.5 * (2**attempt)  # exponential backoff: 0.5s, 1s, 2s, 4s...
                logger.info(
                    "API not ready yet, retrying in %.1f seconds (attempt %d/%d)...",
                    retry_delay,
                    attempt + 1,
                    max_retries,
                )
                time.sleep(retry_delay)
                continue
            colored_print(f"Failed to connect to API after {max_retries} attempts", AnsiColors.RED)
            return ""
        except httpx.HTTPError as e:
            logger.error("API request error: %s", str(e))
            colored_print(f"Error connecting to API: {str(e)}", AnsiColors.RED)
            return ""
    return ""


def run_cli() -> None:
    """Run the CLI client that communicates with the API."""
    messages: List[Dict[str, str]] = []

    colored_print("\nSalesDesk assistant - type 'exit' or 'quit' (or Ctrl+C) to exit", AnsiColors.GREEN)
    while True:
        colored_print("\nYou: ", AnsiColors.BLUE, end="")
        user_msg, ok = get_user_message()
        if not ok:
            break  # Exit if user input couldn't be retrieved (e.g., Ctrl+C)
        if user_msg.lower() in {"exit", "quit"}:
            break
        if not user_msg:
            continue

        messages.append({"role": "user", "content": user_msg})
        reply = stream_chat(messages)
        if reply:
            messages.append({"role": "assistant", "content": reply})
        else:
            messages.pop()  # keep the history consistent with what the server answered


if __name__ == "__main__":
    run_cli()
