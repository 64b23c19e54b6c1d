from wellness_companion.main import run

run()
