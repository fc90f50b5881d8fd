# routers — HTTP adapters over the task engine
