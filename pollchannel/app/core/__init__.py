SERVICE_NAME = "pollchannel"
