from typing import Callable, Optional

from tqdm import tqdm

from relaydrop.avails import useables


class ProgressStatus:
    """Progress of one transfer, in bytes and whole percents

    ``percent`` follows ``floor(100 * done / total)``, never decreases and never exceeds 100,
    ``on_progress`` is called every time ``percent`` moves

    Args:
        show_bar(bool): draw a tqdm progress bar on stderr
        on_progress(Callable[[int], None]): percent listener
    """
    __slots__ = 'show_bar', 'on_progress', 'current_status', 'final_limit', 'percent', 'progress_bar'

    def __init__(self, show_bar=True, on_progress: Optional[Callable[[int], None]] = None):
        self.show_bar = show_bar
        self.on_progress = on_progress
        self.current_status = 0
        self.final_limit = 0
        self.percent = 0
        self.progress_bar = None

    def status_setup(self, prefix, initial_limit, final_limit):
        self.close()
        self.current_status = initial_limit
        self.final_limit = final_limit
        self.percent = useables.progress_percent(initial_limit, final_limit)

        if self.show_bar:
            self.progress_bar = tqdm(
                total=final_limit,
                desc=prefix,
                unit='B',
                unit_scale=True,
                unit_divisor=1024,
            )
            self.progress_bar.update(initial_limit)

    def update_status(self, status):
        if status <= self.current_status:
            return self.percent

        if self.progress_bar:
            self.progress_bar.update(status - self.current_status)
        self.current_status = status

        percent = useables.progress_percent(status, self.final_limit)
        if percent > self.percent:
            self.percent = percent
            if self.on_progress:
                self.on_progress(percent)
        return self.percent

    def close(self):
        if self.progress_bar:
            self.progress_bar.close()
            self.progress_bar = None
