import os, sys
from multiprocessing import Process, Queue, Event

os.environ.setdefault("PYTHONIOENCODING", "utf-8")

from PySide6.QtWidgets import QApplication

from gui import App
from worker import worker_loop

def main():
    os.environ.setdefault("QT_ENABLE_HIGHDPI_SCALING", "1")
    q_in, q_out, cancel_evt = Queue(), Queue(), Event()
    worker = Process(target=worker_loop, args=(q_in, q_out, cancel_evt), daemon=True)
    worker.start()
    app = QApplication(sys.argv)
    w = App(q_in, q_out, cancel_evt)
    w.show()
    code = app.exec()
    worker.join(timeout=5)
    if worker.is_alive():
        worker.terminate()
    sys.exit(code)

if __name__ == "__main__":
    from multiprocessing import freeze_support
    freeze_support()
    main()
