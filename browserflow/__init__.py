# browserflow
