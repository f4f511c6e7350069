import asyncio
import json
import logging
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

import websockets
import websockets.exceptions

# callback(log_lines, err, signature)
NotificationCallback = Callable[[Optional[List[str]], Any, str], Awaitable[None]]


class LogsSubscriber:
    """
    Push-based ledger watcher: `logsSubscribe` for every transaction that
    mentions the target address, reconnecting after a fixed back-off.
    """

    def __init__(self,
                 ws_url: str,
                 address: str,
                 logger: Any = None,
                 commitment: str = "confirmed",
                 reconnect_delay: float = 5.0):
        self.ws_url = ws_url
        self.address = address
        self.commitment = commitment
        self.reconnect_delay = reconnect_delay
        self.logger = logger or logging.getLogger(__name__)
        self.callbacks: List[NotificationCallback] = []
        self.ws = None
        self.is_running = False
        self._tasks = set()

        self.message_health = {
            'last_message_time': None,
            'messages_received': 0,
            'processing_errors': 0
        }

    def add_callback(self, callback: NotificationCallback):
        self.callbacks.append(callback)

    def subscribe(self, address: str, callback: NotificationCallback):
        self.address = address
        self.add_callback(callback)

    def subscribe_message(self) -> dict:
        return {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "logsSubscribe",
            "params": [
                {"mentions": [self.address]},
                {"commitment": self.commitment},
            ],
        }

    async def start(self):
        """Run until stop(); reconnects on disconnect or error"""
        self.is_running = True
        while self.is_running:
            try:
                self.logger.info(f"Connecting to {self.ws_url} for logs mentioning {self.address}")
                async with websockets.connect(self.ws_url, ping_interval=20) as ws:
                    self.ws = ws
                    await ws.send(json.dumps(self.subscribe_message()))
                    self.logger.info("logsSubscribe sent")

                    async for msg in ws:
                        self.message_health['last_message_time'] = datetime.now()
                        self.message_health['messages_received'] += 1
                        self.handle_message(msg)

            except websockets.exceptions.ConnectionClosed as e:
                if not self.is_running:
                    break
                self.logger.error(
                    f"WebSocket disconnected. Code: {e.code}, "
                    f"Last message: {self.message_health['last_message_time']}"
                )
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if not self.is_running:
                    break
                self.logger.error(f"Connection error: {str(e)}")
            finally:
                self.ws = None

            if self.is_running:
                await asyncio.sleep(self.reconnect_delay)

    async def stop(self):
        self.is_running = False
        if self.ws is not None:
            await self.ws.close()
        # Dispatched callbacks run to completion; they may hold a swap
        if self._tasks:
            self.logger.info(f"Waiting for {len(self._tasks)} dispatched notification(s)")
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def handle_message(self, msg: str):
        """Parse one frame and dispatch each callback as its own task"""
        try:
            data = json.loads(msg)
        except json.JSONDecodeError:
            self.message_health['processing_errors'] += 1
            self.logger.error(f"Undecodable websocket frame: {msg[:200]}")
            return

        if "result" in data and "id" in data:
            self.logger.info(f"Subscription confirmed: {data['result']}")
            return
        if data.get("method") != "logsNotification":
            return

        try:
            value = data["params"]["result"]["value"]
            signature = value["signature"]
        except (KeyError, TypeError):
            self.message_health['processing_errors'] += 1
            self.logger.error(f"Malformed logsNotification: {msg[:200]}")
            return

        for callback in self.callbacks:
            task = asyncio.create_task(callback(value.get("logs"), value.get("err"), signature))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
