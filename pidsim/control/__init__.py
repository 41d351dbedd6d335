"""PID controller, tuning rules and the closed-loop auto-tuner."""
