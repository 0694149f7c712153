"""Minimal terminal demonstration of the turn orchestrator."""

import asyncio

from chat_core.api import service


async def main() -> None:
    orchestrator = service.get_default_orchestrator()
    printed = 0

    def on_event(event: str) -> None:
        nonlocal printed
        if event != "transcript" or not orchestrator.transcript:
            return
        last = orchestrator.transcript[-1]
        if last.role == "assistant" and last.status == "streaming":
            print(last.content[printed:], end="", flush=True)
            printed = len(last.content)

    orchestrator.add_listener(on_event)
    print("输入消息开始对话，/regen 重新生成，/new 新会话，空行退出。")
    while True:
        line = input("\nUser: ").strip()
        if not line:
            break
        if line == "/new":
            orchestrator.new_conversation()
            continue
        printed = 0
        print("Assistant: ", end="", flush=True)
        if line == "/regen":
            reply = await service.regenerate_last()
        else:
            reply = await service.send_message(line)
        if reply["status"] != "completed":
            print(reply["error"] or reply["reason"])
        elif printed == 0 and reply["assistant_message"]:
            print(reply["assistant_message"]["content"])
    await orchestrator.drain()
    print(service.snapshot()["usage"])


if __name__ == "__main__":
    asyncio.run(main())
