"""HealthPod backend application source tree."""
