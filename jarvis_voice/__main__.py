from jarvis_voice.cli import cli

cli()
