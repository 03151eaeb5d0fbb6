from toolbridge.cli import app

app(prog_name="tool-bridge")
