"""커맨드라인 룸 클라이언트.

Usage:
    echo-client --url ws://localhost:3000/ws --room demo1 --name Alice

표준 입력 명령:
    /mic     마이크 on/off
    /cam     카메라 on/off
    /screen  화면 공유 on/off
    /leave   룸 나가기
    그 외    채팅 전송
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime
from typing import Dict

from aiortc import MediaStreamTrack
from aiortc.contrib.media import MediaBlackhole

from ..errors import MediaPermissionDenied
from .session import ChatEntry, EchoClient

logger = logging.getLogger(__name__)


def print_chat(entry: ChatEntry) -> None:
    stamp = datetime.fromtimestamp(entry.ts / 1000).strftime("%H:%M:%S") if entry.ts else "--:--:--"
    print(f"[{stamp}] {entry.name}: {entry.text}")


class RemoteMediaSink:
    """재생하지 않는 원격 트랙을 피어별 MediaBlackhole로 소비합니다.

    원격 트랙은 읽지 않으면 수신 큐에 프레임이 계속 쌓이므로, 터미널
    클라이언트는 받은 트랙을 모두 버립니다.
    """

    def __init__(self):
        self.sinks: Dict[str, MediaBlackhole] = {}

    async def attach(self, peer_id: str, track: MediaStreamTrack) -> None:
        sink = self.sinks.setdefault(peer_id, MediaBlackhole())
        sink.addTrack(track)
        await sink.start()

    async def detach(self, peer_id: str) -> None:
        sink = self.sinks.pop(peer_id, None)
        if sink is not None:
            await sink.stop()

    async def close(self) -> None:
        for peer_id in list(self.sinks):
            await self.detach(peer_id)


async def print_events(client: EchoClient, sink: RemoteMediaSink) -> None:
    """링크 이벤트를 출력하고 원격 트랙을 sink에 연결합니다."""
    while True:
        event = await client.manager.events.get()
        name = client.roster.get(event.peer_id, event.peer_id[:8])
        if event.kind == "state":
            print(f"* {name}: {event.state.value}")
        elif event.kind == "track":
            await sink.attach(event.peer_id, event.track)
            print(f"* {name}: {event.track.kind} 트랙 수신")
        elif event.kind == "speaking":
            if event.speaking:
                print(f"* {name} 말하는 중")
        elif event.kind == "closed":
            await sink.detach(event.peer_id)
            print(f"* {name}: 연결 종료 ({event.state.value})")


async def read_commands(client: EchoClient) -> None:
    """표준 입력 명령을 처리합니다. EOF 또는 /leave에서 종료."""
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            break
        command = line.strip()
        if command == "/mic":
            print(f"* 마이크 {'켜짐' if client.media.toggle_mic() else '꺼짐'}")
        elif command == "/cam":
            print(f"* 카메라 {'켜짐' if client.media.toggle_camera() else '꺼짐'}")
        elif command == "/screen":
            sharing = await client.media.toggle_screen_share()
            print(f"* 화면 공유 {'시작' if sharing else '중지'}")
        elif command == "/leave":
            break
        elif command:
            await client.send_chat(command)
    await client.leave()


async def run_client(url: str, room: str, name: str) -> int:
    client = EchoClient(url, room, name, on_chat=print_chat)
    try:
        await client.start()
    except MediaPermissionDenied as e:
        print(f"카메라/마이크를 사용할 수 없습니다: {e}", file=sys.stderr)
        return 1

    sink = RemoteMediaSink()
    receive_task = asyncio.create_task(client.receive_loop())
    events_task = asyncio.create_task(print_events(client, sink))
    commands_task = asyncio.create_task(read_commands(client))
    try:
        await receive_task
    finally:
        events_task.cancel()
        commands_task.cancel()
        await sink.close()

    print(f"* 상태: {client.status.value}")
    return 0


def main():
    parser = argparse.ArgumentParser(description="Join an echo-mesh room")
    parser.add_argument("--url", default="ws://localhost:3000/ws", help="Signaling server URL")
    parser.add_argument("--room", required=True, help="Room ID")
    parser.add_argument("--name", default="", help="Display name")
    parser.add_argument("--log-level", default="WARNING", help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    sys.exit(asyncio.run(run_client(args.url, args.room, args.name)))


if __name__ == "__main__":
    main()
