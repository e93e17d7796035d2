"""HTTP layer: blueprints for devices, tags, reports and messages, metrics counters and the server."""