import asyncio

from stranger_chat.ui.cli import ChatCLI


def main():
    cli = ChatCLI()
    try:
        asyncio.run(cli.run())
    except KeyboardInterrupt:
        pass
    except Exception as e:
        print(f"Fatal Error: {e}")


if __name__ == "__main__":
    main()
