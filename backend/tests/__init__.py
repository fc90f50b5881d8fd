# tests — pytest suite for the task tracker
