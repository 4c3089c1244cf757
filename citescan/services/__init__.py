"""
Collaborator implementations and pure scoring helpers used by the step executors.
"""
