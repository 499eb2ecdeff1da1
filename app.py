import os
import logging
import queue
from flask import Flask, request, jsonify
from pydantic import ValidationError
from dispatcher import config
from dispatcher.dispatcher import Dispatcher
from dispatcher.exception import (
    DuplicatedSubmissionIdError,
    WorkerNotFoundError,
    WorkerSpawnError,
)
from dispatcher.meta import Submission
from dispatcher.worker_manager import WorkerManager

logging.basicConfig(
    filename=config.LOG_DIR / "sandbox.log",
    level=logging.DEBUG,
)
app = Flask(__name__)
if __name__ != "__main__":
    # let flask app use gunicorn's logger
    gunicorn_logger = logging.getLogger("gunicorn.error")
    app.logger.handlers = gunicorn_logger.handlers
    app.logger.setLevel(gunicorn_logger.level)
    logging.getLogger().setLevel(gunicorn_logger.level)

    # Allow overriding log level via environment variable
    if os.getenv("NOJ_DEBUG", "").lower() == "true":
        app.logger.setLevel(logging.DEBUG)
        logging.getLogger().setLevel(logging.DEBUG)
logger = app.logger

# setup worker pool and dispatcher
DISPATCHER_CONFIG = os.getenv(
    "DISPATCHER_CONFIG",
    ".config/dispatcher.json",
)
LIMITS = config.get_dispatcher_limits(DISPATCHER_CONFIG)
MANAGER = WorkerManager(base_port=LIMITS["worker_base_port"])
MANAGER.install_shutdown_hooks()
DISPATCHER = Dispatcher(MANAGER, DISPATCHER_CONFIG)
for _ in range(LIMITS["worker_count"]):
    try:
        MANAGER.spawn()
    except WorkerSpawnError as e:
        logger.error(f"failed to spawn worker: {e}")
DISPATCHER.start()


def _err(msg: str, code: int):
    return jsonify({
        "status": "err",
        "msg": msg,
        "data": None,
    }), code


@app.post("/submit")
def submit():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return _err("payload must be a json object", 400)
    try:
        submission = Submission.model_validate(payload)
    except ValidationError as e:
        logger.debug(f"get invalid submission: {e}")
        return _err(str(e), 400)
    logger.debug(f"send submission {submission.id} to dispatcher")
    try:
        DISPATCHER.submit(submission)
    except DuplicatedSubmissionIdError as e:
        return _err(str(e), 409)
    except queue.Full:
        return _err(
            "task queue is full now.\n"
            "please wait a moment and re-send the submission.",
            503,
        )
    return jsonify({
        "status": "ok",
        "msg": "queued",
        "data": {
            "submissionId": submission.id
        },
    }), 202


@app.get("/status")
def status():
    ret = DISPATCHER.status()
    ret["workers"] = [w.to_dict() for w in MANAGER.list()]
    return jsonify(ret), 200


@app.get("/workers")
def list_workers():
    return jsonify({
        "status": "ok",
        "msg": "ok",
        "data": [w.to_dict() for w in MANAGER.list()],
    })


@app.post("/workers")
def spawn_worker():
    body = request.get_json(silent=True) or {}
    port = body.get("port") if isinstance(body, dict) else None
    if port is not None and (not isinstance(port, int) or port <= 0):
        return _err("port must be a positive integer", 400)
    try:
        worker = MANAGER.spawn(port)
    except WorkerSpawnError as e:
        logger.warning(f"spawn worker failed: {e}")
        return _err(str(e), 500)
    return jsonify({
        "status": "ok",
        "msg": "spawned",
        "data": worker.to_dict(),
    }), 201


@app.delete("/workers/<int:port>")
def kill_worker(port: int):
    try:
        MANAGER.kill(port)
    except WorkerNotFoundError as e:
        return _err(str(e), 404)
    return jsonify({
        "status": "ok",
        "msg": "killed",
        "data": {
            "port": port
        },
    })


# for local debug
# if __name__ == "__main__":
#     app.run(host="0.0.0.0", port=5000, debug=True)
