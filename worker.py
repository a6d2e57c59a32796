import traceback
from multiprocessing import Queue

from worker_handlers import (
    handle_env_check,
    handle_setup,
    handle_install_adb,
    handle_list_patches,
    handle_wait_device,
    handle_build,
    handle_adb_kill
)

HANDLERS = {
    "env_check": handle_env_check,
    "setup": handle_setup,
    "install_adb": handle_install_adb,
    "list_patches": handle_list_patches,
    "wait_device": handle_wait_device,
    "build": handle_build,
    "adb_kill": handle_adb_kill,
}

def worker_loop(in_q: Queue, out_q: Queue, cancel_evt=None):
    while True:
        msg = in_q.get()
        if msg is None:
            break

        cmd = msg.get("cmd")
        handler = HANDLERS.get(cmd)

        try:
            if handler:
                handler(msg, out_q, cancel_evt=cancel_evt)
            else:
                out_q.put({"type":"fail","error":f"unknown command: {cmd}"})
        except Exception:
            out_q.put({"type":"fail","error":f"Worker Error ({cmd}):\n{traceback.format_exc()}"})

        out_q.put({"type":"done","cmd":cmd})
