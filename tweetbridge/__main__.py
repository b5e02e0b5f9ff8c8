from tweetbridge.cli import main

main()
