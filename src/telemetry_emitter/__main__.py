from telemetry_emitter.cli import main

main()
