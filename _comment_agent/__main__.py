from _comment_agent.webhook_server import main

if __name__ == "__main__":
    main()
