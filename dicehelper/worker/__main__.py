from dicehelper.worker.worker_main import run

if __name__ == "__main__":
    run()
