from ttml_lyrics.cli import main

main()
