"""Background execution: broker tasks, scheduler, job framework and dead letters.

Submodules are imported explicitly; importing ``broker`` connects the
module-level taskiq broker to settings.
"""
