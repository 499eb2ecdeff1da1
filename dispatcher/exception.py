class DuplicatedSubmissionIdError(Exception):
    pass


class WorkerNotFoundError(Exception):
    pass


class WorkerSpawnError(Exception):
    pass
