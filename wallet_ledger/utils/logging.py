def get_extra_data_log(obj: object) -> dict:
    return {
        column.name: getattr(obj, column.name)
        for column in obj.__table__.columns
    }
