import logging
import joblib

import scbadger.config


_logger = logging.getLogger(__name__)


class Cancelled(Exception):
    pass


class WorkerPool(object):

    def __init__(self, n_jobs=1, batch_size=64):
        """ Pool of workers for independent tasks.

        KwArgs:
            n_jobs (int): number of joblib workers, 1 runs tasks in process
            batch_size (int): number of tasks dispatched between cancellation checks

        """

        self.n_jobs = n_jobs
        self.batch_size = batch_size

    @classmethod
    def from_config(cls, config):
        return cls(
            n_jobs=scbadger.config.get_param(config, 'n_jobs'),
            batch_size=scbadger.config.get_param(config, 'batch_size'),
        )

    def map(self, func, tasks, cancel_event=None):
        """ Apply a function to each task.

        Args:
            func (callable): function applied to the arguments of each task
            tasks (list of tuple): arguments for each task

        KwArgs:
            cancel_event (threading.Event): event signalling cancellation

        Returns:
            list: results in the order of tasks

        Raises:
            Cancelled: cancel_event was set before all tasks completed

        """

        tasks = list(tasks)
        results = list()

        for batch_start in range(0, len(tasks), self.batch_size):
            if cancel_event is not None and cancel_event.is_set():
                raise Cancelled('cancelled after {} of {} tasks'.format(batch_start, len(tasks)))

            batch = tasks[batch_start:batch_start + self.batch_size]

            if self.n_jobs == 1:
                results.extend(func(*args) for args in batch)
            else:
                results.extend(joblib.Parallel(n_jobs=self.n_jobs)(
                    joblib.delayed(func)(*args) for args in batch))

            _logger.debug('completed %d of %d tasks', len(results), len(tasks))

        return results

