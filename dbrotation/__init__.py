"""
dbrotation — Database password rotation for versioned secret stores.

Entry points:
    dbrotation.rotate.lambda_handler   Secrets Manager rotation function
    dbrotation.rotate.main             CLI (db-rotate)
"""
