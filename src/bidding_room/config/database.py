from pydantic import BaseModel


class DatabaseSettings(BaseModel):
    url: str = "sqlite:///./bidding_room.db"
    echo: bool = False
