import asyncio
import json
import sys

import websockets


async def main(name, room_id=None):
    async with websockets.connect("ws://localhost:8080/ws") as ws:
        payload = {"name": name}
        if room_id:
            payload["roomId"] = room_id
        await ws.send(json.dumps({"type": "join", "payload": payload}))

        # Room state after the join
        state = json.loads(await ws.recv())
        print(f"State: {state}")
        if state["type"] != "state":
            return
        print(f"Room id: {state['payload']['roomId']}")

        await ws.send(json.dumps({"type": "vote", "payload": {"vote": "5"}}))
        print(f"After vote: {await ws.recv()}")

        await ws.send(json.dumps({"type": "reveal"}))
        print(f"After reveal: {await ws.recv()}")


if __name__ == "__main__":
    asyncio.run(main(sys.argv[1] if len(sys.argv) > 1 else "demo-user",
                     sys.argv[2] if len(sys.argv) > 2 else None))
